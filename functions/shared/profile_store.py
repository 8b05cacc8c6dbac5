"""
Profile datastore backed by DynamoDB.

Each profile carries a version counter. upsert() is conditional on the
version the caller read (or on the profile not existing yet), so two
concurrent read-merge-write sequences for one user cannot silently
overwrite each other's merge.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

from botocore.exceptions import ClientError

from .aws_clients import get_dynamodb
from .constants import DEFAULT_ROLE, PREF_EXTERNAL_CONTACT_ID, PROFILE_WRITE_ATTEMPTS, ROLE_ORDER
from .dynamo import call_dynamodb, is_conditional_check_failure
from .errors import ProfileConflictError
from .retry import PROFILE_RETRY_CONFIG, calculate_delay
from .types import ProfileItem

logger = logging.getLogger(__name__)

PROFILE_SK = "PROFILE"


def profiles_table_name() -> str:
    return os.environ.get("PROFILES_TABLE", "crmsync-profiles")


@dataclass
class ProfileRecord:
    user_id: str
    role: str = DEFAULT_ROLE
    active: bool = True
    preferences: dict[str, Any] = field(default_factory=dict)
    full_name: Optional[str] = None
    status_updated_at: Optional[str] = None
    version: int = 0

    @classmethod
    def from_item(cls, item: ProfileItem) -> "ProfileRecord":
        role = item.get("role") or DEFAULT_ROLE
        if role not in ROLE_ORDER:
            logger.warning(f"Unknown role {role!r} on profile {item['pk']}, treating as {DEFAULT_ROLE}")
            role = DEFAULT_ROLE
        version = item.get("version", 0)
        return cls(
            user_id=item["pk"],
            role=role,
            active=bool(item.get("active", True)),
            preferences=dict(item.get("preferences") or {}),
            full_name=item.get("full_name"),
            status_updated_at=item.get("status_updated_at"),
            version=int(version) if isinstance(version, (int, Decimal)) else 0,
        )

    @property
    def external_contact_id(self) -> Optional[str]:
        value = self.preferences.get(PREF_EXTERNAL_CONTACT_ID)
        return value if isinstance(value, str) and value else None


class ProfileStore:
    """Read-before-write and conditional upsert of profile records."""

    service = "profiles"

    def __init__(self, table=None):
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_dynamodb().Table(profiles_table_name())
        return self._table

    def get(self, user_id: str) -> Optional[ProfileRecord]:
        response = call_dynamodb(
            self.service,
            "get",
            self.table.get_item,
            Key={"pk": user_id, "sk": PROFILE_SK},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return ProfileRecord.from_item(item) if item else None

    def upsert(self, profile: ProfileRecord, expected_version: Optional[int]) -> ProfileRecord:
        """Write the full profile if it is still at expected_version.

        Args:
            profile: Desired end state
            expected_version: Version read before merging, None if no profile existed

        Raises:
            ProfileConflictError: the stored profile changed since it was read
        """
        now = datetime.now(timezone.utc).isoformat()
        next_version = (expected_version or 0) + 1
        item = {
            "pk": profile.user_id,
            "sk": PROFILE_SK,
            "role": profile.role,
            "active": profile.active,
            "preferences": profile.preferences,
            "status_updated_at": now,
            "updated_at": now,
            "version": next_version,
        }
        if profile.full_name:
            item["full_name"] = profile.full_name

        if expected_version is None:
            condition = {"ConditionExpression": "attribute_not_exists(pk)"}
        elif expected_version == 0:
            # Profiles created outside this subsystem carry no version yet
            condition = {
                "ConditionExpression": "attribute_exists(pk) AND attribute_not_exists(#version)",
                "ExpressionAttributeNames": {"#version": "version"},
            }
        else:
            condition = {
                "ConditionExpression": "#version = :expected",
                "ExpressionAttributeNames": {"#version": "version"},
                "ExpressionAttributeValues": {":expected": expected_version},
            }

        try:
            call_dynamodb(self.service, "upsert", self.table.put_item, Item=item, **condition)
        except ClientError as e:
            if is_conditional_check_failure(e):
                raise ProfileConflictError(profile.user_id, expected_version) from e
            raise

        profile.status_updated_at = now
        profile.version = next_version
        return profile


def read_merge_write(
    profiles: ProfileStore,
    user_id: str,
    merge: Callable[[Optional[ProfileRecord]], Optional[ProfileRecord]],
    attempts: int = PROFILE_WRITE_ATTEMPTS,
) -> Tuple[Optional[ProfileRecord], bool]:
    """
    Read a profile, merge, and write it back under optimistic concurrency.

    On a version conflict the profile is re-read and the merge recomputed
    from the fresh state, so a concurrent writer's changes are never lost.

    Args:
        profiles: Profile datastore
        user_id: Identity id the profile is keyed by
        merge: Returns the desired profile, or None to skip writing
        attempts: Maximum read-merge-write cycles

    Returns:
        (profile, written) - the stored or unchanged profile and whether a write happened

    Raises:
        ProfileConflictError: every attempt lost a race
    """
    for attempt in range(attempts):
        current = profiles.get(user_id)
        expected_version = current.version if current else None
        desired = merge(current)
        if desired is None:
            return current, False
        try:
            return profiles.upsert(desired, expected_version), True
        except ProfileConflictError:
            if attempt == attempts - 1:
                logger.error(f"Giving up on profile {user_id} after {attempts} conflicting writes")
                raise
            delay = calculate_delay(attempt, PROFILE_RETRY_CONFIG)
            logger.warning(
                f"Profile {user_id} changed during write, "
                f"retry {attempt + 1}/{attempts} in {delay:.2f}s"
            )
            time.sleep(delay)

    # Unreachable for attempts >= 1
    raise ProfileConflictError(user_id, None)
