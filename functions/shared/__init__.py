# Shared utilities package
from .account_reconciler import ensure_account
from .config import WebhookSettings
from .errors import WebhookError
from .lifecycle import LifecycleAction, classify
from .payload_normalizer import WebhookEvent, normalize
from .response_utils import error_response, success_response
from .signature import verify_request
from .status_updater import update_active_status

__all__ = [
    "verify_request",
    "normalize",
    "WebhookEvent",
    "classify",
    "LifecycleAction",
    "ensure_account",
    "update_active_status",
    "WebhookSettings",
    "error_response",
    "success_response",
    "WebhookError",
]
