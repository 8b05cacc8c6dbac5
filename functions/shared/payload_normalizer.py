"""
Normalize arbitrarily-shaped CRM webhook JSON into a WebhookEvent.

The CRM's payload schema drifts between workflow versions and trigger types,
so every logical field is resolved by probing an ordered list of dotted alias
paths. Supporting a new vendor alias is a change to FIELD_ALIASES only.
"""

import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Optional

# Canonical field -> alias paths, tried in order; first non-empty string wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "event_id": ("event_id", "eventId", "id", "meta.event_id", "meta.eventId"),
    "event_type": (
        "event",
        "event_type",
        "eventType",
        "type",
        "eventName",
        "meta.event",
        "meta.type",
    ),
    "email": ("contact.email", "email", "customer.email", "payload.email"),
    "contact_id": ("contact.id", "contactId", "customer.id", "customerId"),
    "full_name": ("contact.name", "customer.name"),
    "first_name": (
        "contact.first_name",
        "contact.firstName",
        "customer.first_name",
        "customer.firstName",
        "first_name",
        "firstName",
    ),
    "last_name": (
        "contact.last_name",
        "contact.lastName",
        "customer.last_name",
        "customer.lastName",
        "last_name",
        "lastName",
    ),
    "product_id": (
        "product.id",
        "productId",
        "product_id",
        "offer.id",
        "offerId",
        "invoice.product_id",
        "meta.product_id",
    ),
}

# Tag containers; each may hold a list of strings or a comma-separated string
TAG_PATHS: tuple[str, ...] = ("tags", "contact.tags", "contact.tagList")

# Same shape check the signup endpoints use
EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Contact:
    email: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class WebhookEvent:
    """Canonical view of one inbound webhook. Never persisted."""

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    contact: Contact = field(default_factory=Contact)
    product_id: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def to_log_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "product_id": self.product_id,
            "tags": sorted(self.tags),
            "has_email": bool(self.contact.email),
        }


def get_path(payload: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None if any segment is missing."""
    current = payload
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return None
    return current


def resolve_string(payload: Any, paths: Iterable[str]) -> Optional[str]:
    """Return the first non-empty string found at any of the alias paths, trimmed."""
    for path in paths:
        value = get_path(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_field(payload: Any, canonical: str) -> Optional[str]:
    return resolve_string(payload, FIELD_ALIASES[canonical])


def normalize_email(value: Optional[str]) -> Optional[str]:
    """Trim and lower-case an email; anything that isn't shaped like one is None."""
    if not value:
        return None
    email = value.strip().lower()
    if not EMAIL_REGEX.match(email):
        return None
    return email


def extract_tags(payload: Any) -> FrozenSet[str]:
    tags: set[str] = set()
    for path in TAG_PATHS:
        candidate = get_path(payload, path)
        if isinstance(candidate, list):
            for value in candidate:
                if isinstance(value, str) and value.strip():
                    tags.add(value.strip().lower())
        elif isinstance(candidate, str):
            tags.update(
                tag.strip().lower() for tag in candidate.split(",") if tag.strip()
            )
    return frozenset(tags)


def extract_full_name(payload: Any) -> Optional[str]:
    full_name = resolve_field(payload, "full_name")
    if full_name:
        return full_name
    parts = [resolve_field(payload, "first_name"), resolve_field(payload, "last_name")]
    joined = " ".join(part for part in parts if part)
    return joined or None


def normalize(payload: Any) -> WebhookEvent:
    """Extract the canonical event from a decoded JSON document.

    Non-object documents normalize to an empty event, which the handler then
    ignores for lack of an email.
    """
    if not isinstance(payload, dict):
        return WebhookEvent()

    event_type = resolve_field(payload, "event_type")

    return WebhookEvent(
        event_id=resolve_field(payload, "event_id"),
        event_type=event_type.lower() if event_type else None,
        contact=Contact(
            email=normalize_email(resolve_field(payload, "email")),
            id=resolve_field(payload, "contact_id"),
            name=extract_full_name(payload),
        ),
        product_id=resolve_field(payload, "product_id"),
        tags=extract_tags(payload),
    )
