"""
CRM Webhook Endpoint - POST /webhooks/crm

Receives lifecycle events (purchase, trial start, payment failure/recovery,
cancellation) from the marketing CRM and reconciles them into the account's
identity and profile. Authenticated by signature or shared secret instead of
API key auth.
"""

import hashlib
import json
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from botocore.exceptions import ClientError

from shared.account_reconciler import ensure_account
from shared.aws_clients import get_dynamodb
from shared.config import WebhookSettings, get_webhook_secret
from shared.constants import WEBHOOK_EVENT_TTL_DAYS
from shared.errors import AuthenticationError, CollaboratorUnavailableError, MalformedPayloadError, ProfileConflictError
from shared.identity_store import IdentityStore
from shared.lifecycle import Classification, LifecycleAction, classify
from shared.logging_utils import configure_structured_logging, log_api_request, mask_email, set_request_id
from shared.metrics import emit_error_metric, emit_webhook_action_metric
from shared.payload_normalizer import WebhookEvent, normalize
from shared.profile_store import ProfileStore
from shared.request_utils import get_raw_body
from shared.response_utils import error_response, preflight_response, success_response
from shared.signature import verify_request
from shared.status_updater import update_active_status
from shared.types import APIGatewayEvent, LambdaResponse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

HANDLER_NAME = "crm_webhook"
WEBHOOK_PATH = "/webhooks/crm"


def _webhook_events_table_name() -> str:
    return os.environ.get("WEBHOOK_EVENTS_TABLE", "crmsync-webhook-events")


def _build_collaborators() -> tuple[IdentityStore, ProfileStore]:
    return IdentityStore(), ProfileStore()


# ===========================================
# Webhook Event Audit Trail
# ===========================================


def _audit_key(event: WebhookEvent, raw_body: bytes) -> str:
    """Event id when the CRM sends one, otherwise a hash of the exact body."""
    if event.event_id:
        return event.event_id
    return f"sha256:{hashlib.sha256(raw_body).hexdigest()}"


def _record_webhook_event(
    audit_key: str,
    event: WebhookEvent,
    action: str,
    status: str,
    error: Optional[str] = None,
):
    """Record webhook event for audit trail (best-effort).

    Failures are logged but do not affect the webhook response.

    Args:
        audit_key: Event id or payload hash
        event: Normalized event
        action: Classified lifecycle action
        status: "applied", "skipped", "ignored" or "failed"
        error: Error message if status is "failed"
    """
    try:
        table = get_dynamodb().Table(_webhook_events_table_name())
        now = datetime.now(timezone.utc)
        table.put_item(
            Item={
                "pk": audit_key,
                "sk": action,
                "event_type": event.event_type,
                "product_id": event.product_id,
                "contact_id": event.contact.id,
                "email_masked": mask_email(event.contact.email),
                "processed_at": now.isoformat(),
                "status": status,
                "error": error,
                "ttl": int((now + timedelta(days=WEBHOOK_EVENT_TTL_DAYS)).timestamp()),
            }
        )
    except Exception as e:
        # Best-effort - audit recording should not block webhook response
        logger.error(f"Failed to record webhook event {audit_key}: {e}")


# ===========================================
# Action dispatch
# ===========================================


def _dispatch(
    classification: Classification,
    event: WebhookEvent,
    settings: WebhookSettings,
    identities: IdentityStore,
    profiles: ProfileStore,
) -> dict:
    """Run the reconciler or status updater for a classified event."""
    action = classification.action
    contact = event.contact

    if action == LifecycleAction.PRO_PURCHASE:
        result = ensure_account(
            identities,
            profiles,
            contact.email,
            full_name=contact.name,
            external_contact_id=contact.id,
            desired_role="pro",
            activate=True,
            send_invite=True,
            settings=settings,
        )
    elif action == LifecycleAction.TRIAL_SIGNUP:
        result = ensure_account(
            identities,
            profiles,
            contact.email,
            full_name=contact.name,
            external_contact_id=contact.id,
            desired_role="user",
            activate=True,
            send_invite=True,
            settings=settings,
        )
    elif action == LifecycleAction.USER_UPDATE:
        # Low-impact default: refresh linkage, keep the current active flag
        result = ensure_account(
            identities,
            profiles,
            contact.email,
            full_name=contact.name,
            external_contact_id=contact.id,
            desired_role="user",
            activate=None,
            send_invite=True,
            settings=settings,
        )
    elif action == LifecycleAction.PAYMENT_FAILED:
        result = update_active_status(
            identities,
            profiles,
            contact.email,
            active=False,
            disabled_message=settings.payment_failed_message,
            external_contact_id=contact.id,
            settings=settings,
        )
    elif action == LifecycleAction.CANCELLATION:
        result = update_active_status(
            identities,
            profiles,
            contact.email,
            active=False,
            disabled_message=settings.cancellation_message,
            external_contact_id=contact.id,
            settings=settings,
        )
    elif action == LifecycleAction.PAYMENT_RECOVERED:
        result = update_active_status(
            identities,
            profiles,
            contact.email,
            active=True,
            disabled_message=None,
            external_contact_id=contact.id,
            settings=settings,
        )
    else:
        return {}

    return result.to_dict()


def handler(event: APIGatewayEvent, context) -> LambdaResponse:
    """
    Lambda handler for CRM lifecycle webhooks.

    Handles:
    - pro_purchase / trial_signup / user_update: create or update the account
    - payment_failed / cancellation: suspend a known account
    - payment_recovered: reactivate a known account

    Responses: 200 handled, 202 ignored (no email), 400 invalid JSON,
    401 unauthorized, 405 wrong method, 500 retryable failure.
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()

    method = (event.get("httpMethod") or "").upper()
    path = event.get("path") or WEBHOOK_PATH

    if method == "OPTIONS":
        return preflight_response()

    if method != "POST":
        return error_response(405, "method_not_allowed", "Method not allowed")

    response, action = _process(event)
    log_api_request(
        logger,
        method,
        path,
        response["statusCode"],
        round((time.time() - start_time) * 1000, 2),
        action=action,
    )
    return response


def _process(event: APIGatewayEvent) -> tuple[LambdaResponse, Optional[str]]:
    settings = WebhookSettings.from_env()
    raw_body = get_raw_body(event)

    # Authenticate before anything touches the payload
    try:
        secret = get_webhook_secret() if settings.auth_mode in ("hmac", "token") else None
    except CollaboratorUnavailableError as e:
        logger.error(f"Cannot authenticate webhook: {e}")
        emit_error_metric("collaborator_unavailable", service=e.service, handler=HANDLER_NAME)
        return error_response(500, "temporary_error", "Temporary error, please retry"), None

    if not verify_request(event, raw_body, settings, secret):
        logger.warning("Webhook authentication failed")
        emit_error_metric("unauthorized", handler=HANDLER_NAME)
        return AuthenticationError().to_response(), None

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON payload: {e}")
        error = MalformedPayloadError()
        return error_response(error.status_code, error.code, error.message), None

    webhook_event = normalize(payload)
    audit_key = _audit_key(webhook_event, raw_body)
    logger.info("Processing CRM webhook", extra={"webhook": webhook_event.to_log_dict()})

    if not webhook_event.contact.email:
        reason = "Webhook ignored: contact email is required."
        logger.warning("Webhook payload missing contact email; cannot reconcile user")
        _record_webhook_event(audit_key, webhook_event, LifecycleAction.IGNORE.value, "ignored")
        emit_webhook_action_metric(LifecycleAction.IGNORE.value, "ignored")
        return (
            success_response(
                {
                    "success": False,
                    "action": LifecycleAction.IGNORE.value,
                    "reason": reason,
                    "eventId": webhook_event.event_id,
                },
                status_code=202,
            ),
            LifecycleAction.IGNORE.value,
        )

    classification = classify(webhook_event, settings)
    action = classification.action.value
    logger.info(f"Classified webhook as {action}: {classification.reason}")

    if classification.action == LifecycleAction.IGNORE:
        _record_webhook_event(audit_key, webhook_event, action, "ignored")
        emit_webhook_action_metric(action, "ignored")
        return (
            success_response(
                {
                    "success": True,
                    "action": action,
                    "reason": classification.reason,
                    "eventId": webhook_event.event_id,
                }
            ),
            action,
        )

    identities, profiles = _build_collaborators()

    try:
        result = _dispatch(classification, webhook_event, settings, identities, profiles)
    except (CollaboratorUnavailableError, ProfileConflictError, ClientError) as e:
        # Transient - the sender redelivers and every write path is idempotent
        logger.error(f"Transient error handling {action}: {e}")
        _record_webhook_event(audit_key, webhook_event, action, "failed", str(e))
        emit_webhook_action_metric(action, "failed")
        emit_error_metric("collaborator_unavailable", service=getattr(e, "service", None), handler=HANDLER_NAME)
        return (
            error_response(500, "temporary_error", "Temporary error, please retry", event_id=webhook_event.event_id),
            action,
        )
    except Exception as e:
        logger.error(f"Unexpected error handling {action}: {e}", exc_info=True)
        _record_webhook_event(audit_key, webhook_event, action, "failed", str(e))
        emit_webhook_action_metric(action, "failed")
        emit_error_metric("processing_failed", handler=HANDLER_NAME)
        return (
            error_response(500, "processing_failed", "Processing failed", event_id=webhook_event.event_id),
            action,
        )

    outcome = "skipped" if result.get("skipped") else "applied"
    _record_webhook_event(audit_key, webhook_event, action, outcome)
    emit_webhook_action_metric(action, outcome)
    logger.info(f"Webhook processed successfully: {action} ({outcome})")

    return (
        success_response(
            {
                "success": True,
                "action": action,
                "reason": classification.reason,
                "result": result,
                "eventId": webhook_event.event_id,
            }
        ),
        action,
    )
