"""
DynamoDB helpers shared by the identity and profile stores.
"""

import logging
import random
import time
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .constants import THROTTLING_ERRORS
from .errors import CollaboratorUnavailableError
from .logging_utils import log_external_call

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_conditional_check_failure(error: ClientError) -> bool:
    return error_code(error) == CONDITIONAL_CHECK_FAILED


def call_dynamodb(
    service: str,
    operation: str,
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    **kwargs: Any,
) -> T:
    """
    Run one DynamoDB round-trip with throttling retry and call logging.

    Conditional-check failures are re-raised untouched so callers can map them
    to domain conflicts. Any other ClientError, and any BotoCoreError, becomes a
    CollaboratorUnavailableError, which the handler turns into a retryable 500.

    Args:
        service: Collaborator name for logs/metrics (e.g. "identity")
        operation: Operation name (e.g. "get_by_email")
        func: Bound boto3 table method
        max_retries: Attempts for throttling errors
    """
    for attempt in range(max_retries):
        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except ClientError as e:
            latency_ms = (time.monotonic() - start) * 1000
            if is_conditional_check_failure(e):
                log_external_call(logger, service, operation, True, latency_ms, error=CONDITIONAL_CHECK_FAILED)
                raise

            log_external_call(logger, service, operation, False, latency_ms, error=error_code(e))
            if error_code(e) in THROTTLING_ERRORS and attempt < max_retries - 1:
                # Exponential backoff with jitter to prevent thundering herd
                base_delay = min(0.1 * (2 ** attempt), 2.0)
                delay = base_delay + random.uniform(0, base_delay * 0.5)
                logger.warning(
                    f"DynamoDB throttled on {service}.{operation}, "
                    f"retry {attempt + 1}/{max_retries} in {delay:.2f}s"
                )
                time.sleep(delay)
                continue
            raise CollaboratorUnavailableError(service, operation, e) from e
        except BotoCoreError as e:
            # Connection and endpoint failures are not retried locally
            log_external_call(logger, service, operation, False, (time.monotonic() - start) * 1000, error=type(e).__name__)
            raise CollaboratorUnavailableError(service, operation, e) from e

        log_external_call(logger, service, operation, True, (time.monotonic() - start) * 1000)
        return result

    # Unreachable: the final attempt either returns or raises
    raise CollaboratorUnavailableError(service, operation)


def strip_empty(item: dict) -> dict:
    """Remove None values and empty strings (DynamoDB rejects empty key strings)."""
    return {k: v for k, v in item.items() if v is not None and v != ""}
