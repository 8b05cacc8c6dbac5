"""
Account reconciliation for pro_purchase, trial_signup and user_update events.

ensure_account() creates or updates the identity + profile pair for an email.
Replaying the same event converges to the same end state:

- identity creation is conditional on the email key; a lost race re-fetches
- role only moves up the user < pro < admin lattice and never to admin
- preferences are merged key by key, never replaced
- the invitation is claimed before sending, so at most one goes out, and a
  redelivery after a failed run still invites an identity it created earlier
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .config import WebhookSettings
from .constants import (
    ASSIGNABLE_ROLES,
    DEFAULT_ROLE,
    PREF_EXTERNAL_CONTACT_ID,
    PREF_INITIAL_CREDITS,
    PREF_MONTHLY_CREDITS,
    ROLE_ORDER,
)
from .errors import IdentityAlreadyExistsError
from .identity_store import IdentityRecord, IdentityStore
from .logging_utils import mask_email
from .profile_store import ProfileRecord, ProfileStore, read_merge_write

logger = logging.getLogger(__name__)


@dataclass
class AccountResult:
    user_id: str
    created_new_user: bool
    resolved_role: str
    active: bool
    invitation_sent: bool = False

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "createdNewUser": self.created_new_user,
            "resolvedRole": self.resolved_role,
            "active": self.active,
            "invitationSent": self.invitation_sent,
        }


def resolve_role(current_role: Optional[str], desired_role: str) -> str:
    """Highest of current and desired role; a desired admin keeps the current role.

    >>> resolve_role("pro", "user")
    'pro'
    >>> resolve_role("user", "admin")
    'user'
    """
    current = current_role if current_role in ROLE_ORDER else DEFAULT_ROLE
    if desired_role not in ASSIGNABLE_ROLES:
        if desired_role == "admin":
            logger.warning("Refusing automatic admin assignment; keeping current role")
        return current
    return desired_role if ROLE_ORDER[desired_role] > ROLE_ORDER[current] else current


def merge_metadata(
    existing: dict[str, Any],
    full_name: Optional[str],
    external_contact_id: Optional[str],
    role_hint: Optional[str],
) -> tuple[dict[str, Any], bool]:
    """Overlay the fields this event carries onto existing identity metadata.

    Returns:
        (merged metadata, whether anything changed)
    """
    merged = dict(existing)
    updates = {
        "full_name": full_name,
        "external_contact_id": external_contact_id,
        "role_hint": role_hint if role_hint in ASSIGNABLE_ROLES else None,
    }
    changed = False
    for key, value in updates.items():
        if value and merged.get(key) != value:
            merged[key] = value
            changed = True
    return merged, changed


def merge_preferences(
    existing: Optional[dict[str, Any]],
    updates: dict[str, Any],
    defaults: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Merge preference keys without dropping unrelated ones.

    Args:
        existing: Stored preferences (may be None)
        updates: Keys to set; a None value removes the key
        defaults: Keys to set only when absent
    """
    merged = dict(existing or {})
    for key, value in (defaults or {}).items():
        merged.setdefault(key, value)
    for key, value in updates.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _resolve_identity(
    identities: IdentityStore,
    email: str,
    metadata: dict[str, Any],
) -> tuple[IdentityRecord, bool]:
    identity = identities.get_by_email(email)
    if identity:
        return identity, False

    try:
        return identities.create_user(email, metadata), True
    except IdentityAlreadyExistsError:
        # A concurrent delivery for the same email created it first
        logger.info(f"Identity for {mask_email(email)} created concurrently, re-fetching")
        identity = identities.get_by_email(email)
        if identity is None:
            raise RuntimeError(f"Identity for {mask_email(email)} reported existing but not found")
        return identity, False


def ensure_account(
    identities: IdentityStore,
    profiles: ProfileStore,
    email: str,
    full_name: Optional[str] = None,
    external_contact_id: Optional[str] = None,
    desired_role: str = DEFAULT_ROLE,
    activate: Optional[bool] = True,
    send_invite: bool = True,
    settings: Optional[WebhookSettings] = None,
) -> AccountResult:
    """
    Create or update the account for an email.

    Args:
        identities: Identity collaborator
        profiles: Profile datastore
        email: Contact email (normalized here as well)
        full_name: Contact name, if the event carried one
        external_contact_id: CRM contact id, if the event carried one
        desired_role: Role this event implies; never escalates to admin
        activate: Active flag to set; None keeps the current flag
        send_invite: Invite identities this webhook created that are not yet invited
        settings: Credit defaults and invitation redirect

    Returns:
        AccountResult describing the reconciled state

    Raises:
        CollaboratorUnavailableError: identity or profile store failed
        ProfileConflictError: concurrent writers kept winning
    """
    settings = settings or WebhookSettings()
    email = email.strip().lower()

    safe_role_hint = desired_role if desired_role in ASSIGNABLE_ROLES else None
    initial_metadata, _ = merge_metadata({}, full_name, external_contact_id, safe_role_hint)

    identity, created_new_user = _resolve_identity(identities, email, initial_metadata)

    if not created_new_user:
        merged, changed = merge_metadata(identity.metadata, full_name, external_contact_id, safe_role_hint)
        if changed:
            identity = identities.update_user_metadata(identity, merged)

    def merge(current: Optional[ProfileRecord]) -> ProfileRecord:
        preference_updates = {}
        if external_contact_id:
            preference_updates[PREF_EXTERNAL_CONTACT_ID] = external_contact_id

        defaults = None
        if current is None:
            defaults = {
                PREF_INITIAL_CREDITS: settings.initial_credits,
                PREF_MONTHLY_CREDITS: settings.monthly_credits,
            }

        if activate is None:
            active = current.active if current else True
        else:
            active = activate

        return ProfileRecord(
            user_id=identity.user_id,
            role=resolve_role(current.role if current else None, desired_role),
            active=active,
            preferences=merge_preferences(
                current.preferences if current else None,
                preference_updates,
                defaults,
            ),
            full_name=full_name or (current.full_name if current else None),
            version=current.version if current else 0,
        )

    profile, _ = read_merge_write(profiles, identity.user_id, merge)

    result = AccountResult(
        user_id=identity.user_id,
        created_new_user=created_new_user,
        resolved_role=profile.role,
        active=profile.active,
    )

    if send_invite and settings.send_invites and identity.awaiting_invitation:
        try:
            result.invitation_sent = identities.invite_by_email(
                identity,
                redirect_to=settings.invite_redirect_url,
                data=initial_metadata,
            )
        except Exception as e:
            # The account write stands; the invitation can be resent manually
            logger.error(f"Failed to send invitation to {mask_email(email)}: {e}")

    logger.info(
        f"Reconciled account {identity.user_id}",
        extra={
            "user_id": identity.user_id,
            "created_new_user": created_new_user,
            "role": profile.role,
            "active": profile.active,
        },
    )
    return result
