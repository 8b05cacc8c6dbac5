"""
Lifecycle classification for normalized CRM webhook events.

classify() is pure and total: every event maps to exactly one action.
Vendor-controlled product ids are checked first; event-type and tag
matching are best-effort fallbacks for inconsistent CRM workflows.
"""

from enum import Enum
from typing import NamedTuple

from .config import WebhookSettings
from .payload_normalizer import WebhookEvent


class LifecycleAction(str, Enum):
    PRO_PURCHASE = "pro_purchase"
    TRIAL_SIGNUP = "trial_signup"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"
    CANCELLATION = "cancellation"
    USER_UPDATE = "user_update"
    IGNORE = "ignore"


# Actions routed to the account reconciler vs. the status updater
RECONCILE_ACTIONS = frozenset(
    {
        LifecycleAction.PRO_PURCHASE,
        LifecycleAction.TRIAL_SIGNUP,
        LifecycleAction.USER_UPDATE,
    }
)
STATUS_ACTIONS = frozenset(
    {
        LifecycleAction.PAYMENT_FAILED,
        LifecycleAction.PAYMENT_RECOVERED,
        LifecycleAction.CANCELLATION,
    }
)


class Classification(NamedTuple):
    action: LifecycleAction
    reason: str


def _classify_event_type(event_type: str) -> Classification | None:
    if "trial" in event_type:
        return Classification(
            LifecycleAction.TRIAL_SIGNUP, f"Event type indicates trial lifecycle: {event_type}"
        )

    if "payment" in event_type and "failed" in event_type:
        return Classification(LifecycleAction.PAYMENT_FAILED, f"Payment failure event: {event_type}")

    if "payment" in event_type and any(word in event_type for word in ("success", "paid", "recovered")):
        return Classification(LifecycleAction.PAYMENT_RECOVERED, f"Payment success event: {event_type}")

    if "recover" in event_type or "reactivat" in event_type:
        return Classification(LifecycleAction.PAYMENT_RECOVERED, f"Account recovery event: {event_type}")

    if "cancel" in event_type:
        return Classification(LifecycleAction.CANCELLATION, f"Cancellation event: {event_type}")

    return None


def classify(event: WebhookEvent, settings: WebhookSettings) -> Classification:
    """Map a normalized event to one lifecycle action, first matching rule wins."""
    product_id = event.product_id
    if product_id:
        if product_id in settings.pro_product_ids:
            return Classification(LifecycleAction.PRO_PURCHASE, f"Matched pro product id {product_id}")
        if product_id in settings.trial_product_ids:
            return Classification(LifecycleAction.TRIAL_SIGNUP, f"Matched trial product id {product_id}")

    if event.event_type:
        by_type = _classify_event_type(event.event_type)
        if by_type:
            return by_type

    if any("pro" in tag for tag in event.tags):
        return Classification(LifecycleAction.PRO_PURCHASE, "Matched pro tag from contact")
    if any("trial" in tag for tag in event.tags):
        return Classification(LifecycleAction.TRIAL_SIGNUP, "Matched trial tag from contact")

    if event.contact.email:
        return Classification(
            LifecycleAction.USER_UPDATE,
            "No lifecycle rule matched; refreshing contact linkage",
        )

    return Classification(LifecycleAction.IGNORE, "No lifecycle rule matched and no contact email")
