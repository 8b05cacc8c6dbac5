"""
Identity collaborator backed by DynamoDB, with invitations sent through SES.

Identities are keyed by normalized email (pk = "EMAIL#<email>"), so email
uniqueness is enforced by the table itself and creation is a single
conditional put. The user id is derived from the email the same way the
signup endpoint derives it, so two racing creators agree on it.
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import get_dynamodb, get_ses
from .constants import IDENTITY_SOURCE
from .dynamo import call_dynamodb, is_conditional_check_failure, strip_empty
from .errors import CollaboratorUnavailableError, IdentityAlreadyExistsError
from .logging_utils import mask_email
from .types import IdentityItem

logger = logging.getLogger(__name__)

IDENTITY_SK = "IDENTITY"


def identities_table_name() -> str:
    return os.environ.get("IDENTITIES_TABLE", "crmsync-identities")


def invite_sender() -> str:
    return os.environ.get("INVITE_EMAIL_SENDER", "noreply@crmsync.dev")


def identity_key(email: str) -> dict:
    return {"pk": f"EMAIL#{email.strip().lower()}", "sk": IDENTITY_SK}


def user_id_for_email(email: str) -> str:
    normalized = email.strip().lower()
    return f"user_{hashlib.sha256(normalized.encode()).hexdigest()[:16]}"


@dataclass
class IdentityRecord:
    user_id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    invited_at: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def awaiting_invitation(self) -> bool:
        """Created by this webhook and not yet invited."""
        return self.created_by == IDENTITY_SOURCE and self.invited_at is None

    @classmethod
    def from_item(cls, item: IdentityItem) -> "IdentityRecord":
        return cls(
            user_id=item["user_id"],
            email=item["email"],
            metadata=dict(item.get("metadata") or {}),
            created_at=item.get("created_at"),
            invited_at=item.get("invited_at"),
            created_by=item.get("created_by"),
        )


class IdentityStore:
    """Lookup, create, update and invite identities."""

    service = "identity"

    def __init__(self, table=None, ses_client=None, sender: Optional[str] = None):
        self._table = table
        self._ses = ses_client
        self._sender = sender

    @property
    def table(self):
        if self._table is None:
            self._table = get_dynamodb().Table(identities_table_name())
        return self._table

    @property
    def ses(self):
        if self._ses is None:
            self._ses = get_ses()
        return self._ses

    def get_by_email(self, email: str) -> Optional[IdentityRecord]:
        response = call_dynamodb(
            self.service,
            "get_by_email",
            self.table.get_item,
            Key=identity_key(email),
            ConsistentRead=True,
        )
        item = response.get("Item")
        return IdentityRecord.from_item(item) if item else None

    def create_user(self, email: str, metadata: dict[str, Any]) -> IdentityRecord:
        """Create an identity for a new email.

        Raises:
            IdentityAlreadyExistsError: the email is already registered
        """
        normalized = email.strip().lower()
        now = datetime.now(timezone.utc).isoformat()
        record = IdentityRecord(
            user_id=user_id_for_email(normalized),
            email=normalized,
            metadata=strip_empty(metadata),
            created_at=now,
            created_by=IDENTITY_SOURCE,
        )
        try:
            call_dynamodb(
                self.service,
                "create_user",
                self.table.put_item,
                Item={
                    **identity_key(normalized),
                    "user_id": record.user_id,
                    "email": normalized,
                    "metadata": record.metadata,
                    "created_at": now,
                    "updated_at": now,
                    "created_by": IDENTITY_SOURCE,
                },
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            if is_conditional_check_failure(e):
                raise IdentityAlreadyExistsError(normalized) from e
            raise
        logger.info(f"Created identity {record.user_id} for {mask_email(normalized)}")
        return record

    def update_user_metadata(self, identity: IdentityRecord, metadata: dict[str, Any]) -> IdentityRecord:
        call_dynamodb(
            self.service,
            "update_user_metadata",
            self.table.update_item,
            Key=identity_key(identity.email),
            UpdateExpression="SET metadata = :metadata, updated_at = :now",
            ExpressionAttributeValues={
                ":metadata": strip_empty(metadata),
                ":now": datetime.now(timezone.utc).isoformat(),
            },
        )
        identity.metadata = dict(metadata)
        return identity

    def invite_by_email(
        self,
        identity: IdentityRecord,
        redirect_to: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Send the account invitation email at most once per identity.

        The invite is claimed with a conditional write before sending, so a
        replayed or concurrent call sends nothing.

        Returns:
            True if an invitation was sent, False if one was already claimed
        """
        now = datetime.now(timezone.utc).isoformat()
        try:
            call_dynamodb(
                self.service,
                "claim_invite",
                self.table.update_item,
                Key=identity_key(identity.email),
                UpdateExpression="SET invited_at = :now",
                ConditionExpression="attribute_exists(pk) AND attribute_not_exists(invited_at)",
                ExpressionAttributeValues={":now": now},
            )
        except ClientError as e:
            if is_conditional_check_failure(e):
                logger.info(f"Invitation already sent to {mask_email(identity.email)}")
                return False
            raise

        try:
            self._send_invite_email(identity.email, redirect_to, data or {})
        except (ClientError, BotoCoreError) as e:
            self._release_invite_claim(identity)
            raise CollaboratorUnavailableError("ses", "send_invite", e) from e

        identity.invited_at = now
        logger.info(f"Invitation sent to {mask_email(identity.email)}")
        return True

    def _release_invite_claim(self, identity: IdentityRecord) -> None:
        """Clear invited_at after a failed send (best-effort)."""
        try:
            call_dynamodb(
                self.service,
                "release_invite",
                self.table.update_item,
                Key=identity_key(identity.email),
                UpdateExpression="REMOVE invited_at",
            )
        except CollaboratorUnavailableError as e:
            logger.error(f"Failed to release invite claim for {identity.user_id}: {e}")

    def _send_invite_email(self, email: str, redirect_to: Optional[str], data: dict[str, Any]) -> None:
        name = data.get("full_name")
        greeting = f"Hi {name}," if name else "Hi,"
        link_text = f"Sign in at: {redirect_to}\n\n" if redirect_to else ""
        link_html = (
            f'<a href="{redirect_to}" '
            'style="display:inline-block;background:#3b82f6;color:white;padding:12px 24px;'
            'text-decoration:none;border-radius:6px;margin:20px 0;">Activate your account</a>'
            if redirect_to
            else ""
        )
        self.ses.send_email(
            Source=self._sender or invite_sender(),
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": "Your account is ready", "Charset": "UTF-8"},
                "Body": {
                    "Html": {
                        "Data": (
                            '<html><body style="font-family:system-ui,sans-serif;max-width:600px;margin:0 auto;padding:20px;">'
                            f'<p style="color:#475569;font-size:16px;">{greeting}</p>'
                            '<p style="color:#475569;font-size:16px;">An account has been created for you. '
                            "Use the link below to set your password and sign in.</p>"
                            f"{link_html}"
                            "</body></html>"
                        ),
                        "Charset": "UTF-8",
                    },
                    "Text": {
                        "Data": (
                            f"{greeting}\n\n"
                            "An account has been created for you. "
                            "Use the link below to set your password and sign in.\n\n"
                            f"{link_text}"
                        ),
                        "Charset": "UTF-8",
                    },
                },
            },
        )
