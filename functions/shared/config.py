"""
Runtime configuration for the CRM webhook.

Settings are read from the environment at invocation time so a redeployed
configuration (or a test) takes effect without re-importing modules. The
shared webhook secret lives in Secrets Manager and is cached with a TTL.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import get_secretsmanager
from .constants import (
    AUTH_MODES,
    DEFAULT_CANCELLATION_MESSAGE,
    DEFAULT_INITIAL_CREDITS,
    DEFAULT_MONTHLY_CREDITS,
    DEFAULT_PAYMENT_FAILED_MESSAGE,
    DEFAULT_SIGNATURE_HEADER,
    SECRET_MISCONFIGURED_ERRORS,
    SIGNATURE_ENCODINGS,
)
from .errors import CollaboratorUnavailableError

logger = logging.getLogger(__name__)

# Cached webhook secret with TTL
_webhook_secret_cache: Optional[str] = None
_webhook_secret_cache_time = 0.0
WEBHOOK_SECRET_CACHE_TTL = 300  # 5 minutes - allows secret rotation to take effect


def parse_id_list(value: Optional[str]) -> FrozenSet[str]:
    """Parse a comma-separated env var into a set of non-empty ids."""
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class WebhookSettings:
    """Configuration inputs for classification, reconciliation and auth."""

    pro_product_ids: FrozenSet[str] = field(default_factory=frozenset)
    trial_product_ids: FrozenSet[str] = field(default_factory=frozenset)
    initial_credits: int = DEFAULT_INITIAL_CREDITS
    monthly_credits: int = DEFAULT_MONTHLY_CREDITS
    invite_redirect_url: Optional[str] = None
    send_invites: bool = True
    auth_mode: str = "hmac"
    signature_encoding: str = "hex"
    signature_header: str = DEFAULT_SIGNATURE_HEADER
    public_key_pem: Optional[str] = None
    payment_failed_message: str = DEFAULT_PAYMENT_FAILED_MESSAGE
    cancellation_message: str = DEFAULT_CANCELLATION_MESSAGE

    @classmethod
    def from_env(cls) -> "WebhookSettings":
        # Use `or` to handle empty string env vars (deploy tooling sets "" when unset)
        auth_mode = (os.environ.get("WEBHOOK_AUTH_MODE") or "hmac").strip().lower()
        if auth_mode not in AUTH_MODES:
            # Unknown modes still build settings; verification rejects every request
            logger.error(f"Unsupported WEBHOOK_AUTH_MODE={auth_mode!r}")

        encoding = (os.environ.get("WEBHOOK_SIGNATURE_ENCODING") or "hex").strip().lower()
        if encoding not in SIGNATURE_ENCODINGS:
            logger.error(f"Unsupported WEBHOOK_SIGNATURE_ENCODING={encoding!r}")

        return cls(
            pro_product_ids=parse_id_list(os.environ.get("CRM_PRO_PRODUCT_IDS")),
            trial_product_ids=parse_id_list(os.environ.get("CRM_TRIAL_PRODUCT_IDS")),
            initial_credits=_env_int("DEFAULT_INITIAL_CREDITS", DEFAULT_INITIAL_CREDITS),
            monthly_credits=_env_int("DEFAULT_MONTHLY_CREDITS", DEFAULT_MONTHLY_CREDITS),
            invite_redirect_url=os.environ.get("APP_LOGIN_URL") or None,
            send_invites=_env_bool("SEND_INVITES", True),
            auth_mode=auth_mode,
            signature_encoding=encoding,
            signature_header=(
                os.environ.get("WEBHOOK_SIGNATURE_HEADER") or DEFAULT_SIGNATURE_HEADER
            ).lower(),
            public_key_pem=os.environ.get("WEBHOOK_PUBLIC_KEY_PEM") or None,
            payment_failed_message=(
                os.environ.get("PAYMENT_FAILED_MESSAGE") or DEFAULT_PAYMENT_FAILED_MESSAGE
            ),
            cancellation_message=(
                os.environ.get("CANCELLATION_MESSAGE") or DEFAULT_CANCELLATION_MESSAGE
            ),
        )


def get_webhook_secret() -> Optional[str]:
    """Retrieve the shared webhook secret from Secrets Manager (cached with TTL).

    Returns None when the secret is not configured, missing, not readable by
    this function, or empty; callers must treat that as "reject everything".

    Raises:
        CollaboratorUnavailableError: Secrets Manager is throttling or unreachable
    """
    global _webhook_secret_cache, _webhook_secret_cache_time

    if _webhook_secret_cache and (time.time() - _webhook_secret_cache_time) < WEBHOOK_SECRET_CACHE_TTL:
        return _webhook_secret_cache

    # Read at runtime to allow tests to set this env var
    secret_arn = os.environ.get("WEBHOOK_SECRET_ARN")
    if not secret_arn:
        logger.error("WEBHOOK_SECRET_ARN not configured")
        return None

    try:
        response = get_secretsmanager().get_secret_value(SecretId=secret_arn)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in SECRET_MISCONFIGURED_ERRORS or code.startswith("AccessDenied"):
            logger.error(f"Webhook secret is misconfigured: {e}")
            return None
        logger.error(f"Failed to retrieve webhook secret: {e}")
        raise CollaboratorUnavailableError("secrets", "get_secret_value", e) from e
    except BotoCoreError as e:
        logger.error(f"Failed to retrieve webhook secret: {e}")
        raise CollaboratorUnavailableError("secrets", "get_secret_value", e) from e

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
        secret = secret_json.get("secret") if isinstance(secret_json, dict) else secret_value
    except json.JSONDecodeError:
        secret = secret_value

    if not secret:
        logger.error("Webhook secret is empty")
        return None

    _webhook_secret_cache = secret
    _webhook_secret_cache_time = time.time()
    return secret


def reset_secret_cache() -> None:
    """Drop the cached secret. Used in tests and after rotation."""
    global _webhook_secret_cache, _webhook_secret_cache_time
    _webhook_secret_cache = None
    _webhook_secret_cache_time = 0.0
