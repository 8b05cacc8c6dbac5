"""
Backoff calculation for internal retries.

Retries against collaborators are normally left to the webhook sender (a
non-2xx response makes it redeliver). The only in-process retries are
DynamoDB throttling and optimistic-concurrency conflicts on profile writes,
both of which use exponential backoff with jitter from here.
"""

import random
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.3  # 0-30% jitter


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff and jitter."""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)

    # Add jitter to prevent thundering herd
    jitter = random.uniform(0, delay * config.jitter_factor)

    return delay + jitter


PROFILE_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    base_delay=0.05,
    max_delay=0.5,
    jitter_factor=0.5,
)
