"""
Active/suspended status updates for payment_failed, payment_recovered and
cancellation events.

Never creates an identity and never touches the role. Duplicate deliveries
are detected by comparing against the stored profile and skipped without
a write.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import WebhookSettings
from .constants import (
    PREF_DISABLED_MESSAGE,
    PREF_EXTERNAL_CONTACT_ID,
    PREF_INITIAL_CREDITS,
    PREF_MONTHLY_CREDITS,
)
from .identity_store import IdentityStore
from .logging_utils import mask_email
from .profile_store import ProfileRecord, ProfileStore, read_merge_write

logger = logging.getLogger(__name__)


@dataclass
class StatusResult:
    skipped: bool
    reason: Optional[str] = None
    user_id: Optional[str] = None
    updated_active: Optional[bool] = None

    def to_dict(self) -> dict:
        if self.skipped:
            body = {"skipped": True, "reason": self.reason}
            if self.user_id:
                body["userId"] = self.user_id
            return body
        return {"userId": self.user_id, "updatedActive": self.updated_active}


def _needs_update(
    profile: Optional[ProfileRecord],
    active: bool,
    disabled_message: Optional[str],
    external_contact_id: Optional[str],
) -> bool:
    if profile is None:
        return True
    if profile.active != active:
        return True
    if profile.preferences.get(PREF_DISABLED_MESSAGE) != disabled_message:
        return True
    return bool(external_contact_id and external_contact_id != profile.external_contact_id)


def update_active_status(
    identities: IdentityStore,
    profiles: ProfileStore,
    email: str,
    active: bool,
    disabled_message: Optional[str] = None,
    external_contact_id: Optional[str] = None,
    settings: Optional[WebhookSettings] = None,
) -> StatusResult:
    """
    Set a known account's active flag and disabled message.

    Args:
        identities: Identity collaborator
        profiles: Profile datastore
        email: Contact email
        active: Desired active flag
        disabled_message: Message shown to a suspended user; None clears it
        external_contact_id: CRM contact id to refresh, if known
        settings: Credit defaults for a profile created here

    Returns:
        StatusResult; skipped when the contact is unknown or nothing changed

    Raises:
        CollaboratorUnavailableError: identity or profile store failed
    """
    settings = settings or WebhookSettings()
    email = email.strip().lower()
    identity = identities.get_by_email(email)
    if identity is None:
        logger.info(f"No identity for {mask_email(email)}; status update skipped")
        return StatusResult(skipped=True, reason="User not found by email")

    def merge(current: Optional[ProfileRecord]) -> Optional[ProfileRecord]:
        if not _needs_update(current, active, disabled_message, external_contact_id):
            return None

        if current:
            preferences = dict(current.preferences)
        else:
            preferences = {
                PREF_INITIAL_CREDITS: settings.initial_credits,
                PREF_MONTHLY_CREDITS: settings.monthly_credits,
            }
        if disabled_message is None:
            preferences.pop(PREF_DISABLED_MESSAGE, None)
        else:
            preferences[PREF_DISABLED_MESSAGE] = disabled_message
        if external_contact_id:
            preferences[PREF_EXTERNAL_CONTACT_ID] = external_contact_id

        if current is None:
            # Identity exists without a profile; create one at the default role with credit defaults
            return ProfileRecord(user_id=identity.user_id, active=active, preferences=preferences)

        return ProfileRecord(
            user_id=current.user_id,
            role=current.role,
            active=active,
            preferences=preferences,
            full_name=current.full_name,
            version=current.version,
        )

    profile, written = read_merge_write(profiles, identity.user_id, merge)
    if not written:
        logger.info(f"Status for {identity.user_id} already up to date")
        return StatusResult(skipped=True, reason="Active status already set", user_id=identity.user_id)

    logger.info(
        f"Updated status for {identity.user_id}",
        extra={"user_id": identity.user_id, "active": active, "has_disabled_message": bool(disabled_message)},
    )
    return StatusResult(skipped=False, user_id=identity.user_id, updated_active=profile.active)
