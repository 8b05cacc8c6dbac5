"""Shared request utilities for API handlers."""

import base64
import binascii
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def get_header(event: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup on an API Gateway event."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def get_query_param(event: dict, name: str) -> Optional[str]:
    params = event.get("queryStringParameters") or {}
    return params.get(name)


def get_raw_body(event: dict) -> bytes:
    """Return the exact request body bytes the sender signed.

    API Gateway base64-encodes binary bodies and flags them with
    isBase64Encoded; those are decoded so signatures are checked against the
    original bytes. An undecodable body yields b"" and fails verification.
    """
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Request body flagged as base64 but failed to decode")
            return b""
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8")
