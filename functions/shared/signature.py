"""
Inbound webhook authentication.

Three schemes are supported, exactly one per deployment:

- hmac: HMAC-SHA256 of the raw body, hex or base64 encoded (never both)
- public_key: RSA PKCS#1 v1.5 + SHA-256 signature from the vendor's key
- token: pre-shared secret in a bearer header, custom header or query param

Every check fails closed: missing key material, an undecodable signature or
a mismatch all return False, and callers must not say which one happened.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .config import WebhookSettings
from .constants import PUBLIC_KEY_SIGNATURE_HEADER, TOKEN_HEADER, TOKEN_QUERY_PARAM
from .request_utils import get_header, get_query_param

logger = logging.getLogger(__name__)

_ALGORITHM_PREFIX = re.compile(r"^sha256=", re.IGNORECASE)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def compute_hmac(raw_body: bytes, secret: str) -> bytes:
    """HMAC-SHA256 digest of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()


def decode_signature(signature: str, encoding: str) -> Optional[bytes]:
    """Decode a signature header value using the deployment's one encoding.

    Returns None if the value is not valid in that encoding.
    """
    cleaned = _ALGORITHM_PREFIX.sub("", signature.strip())
    if not cleaned:
        return None

    if encoding == "hex":
        if len(cleaned) % 2 != 0 or not _HEX_RE.match(cleaned):
            return None
        return bytes.fromhex(cleaned)

    if encoding == "base64":
        # Accept the URL-safe alphabet and missing padding from some senders
        normalized = re.sub(r"\s+", "", cleaned).replace("-", "+").replace("_", "/")
        normalized += "=" * (-len(normalized) % 4)
        try:
            return base64.b64decode(normalized, validate=True)
        except (binascii.Error, ValueError):
            return None

    logger.error(f"Unsupported signature encoding: {encoding}")
    return None


def verify_hmac_signature(
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    encoding: str = "hex",
) -> bool:
    """Verify an HMAC-SHA256 signature header in constant time."""
    if not secret:
        logger.error("Webhook secret not configured; rejecting request")
        return False
    if not signature:
        return False

    provided = decode_signature(signature, encoding)
    if provided is None:
        return False

    expected = compute_hmac(raw_body, secret)
    return hmac.compare_digest(provided, expected)


@lru_cache(maxsize=4)
def _load_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Webhook public key is not an RSA key")
    return key


def verify_public_key_signature(
    raw_body: bytes,
    signature: Optional[str],
    public_key_pem: Optional[str],
) -> bool:
    """Verify a base64 RSA PKCS#1 v1.5 / SHA-256 signature over the raw body."""
    if not public_key_pem:
        logger.error("Webhook public key not configured; rejecting request")
        return False
    if not signature:
        return False

    signature_bytes = decode_signature(signature, "base64")
    if not signature_bytes:
        return False

    try:
        public_key = _load_public_key(public_key_pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error(f"Invalid webhook public key: {e}")
        return False

    try:
        public_key.verify(signature_bytes, raw_body, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


def verify_shared_token(provided: Optional[str], secret: Optional[str]) -> bool:
    """Compare a pre-shared token to the configured secret in constant time."""
    if not secret:
        logger.error("Webhook secret not configured; rejecting request")
        return False
    if not provided:
        return False
    return hmac.compare_digest(provided.strip().encode("utf-8"), secret.encode("utf-8"))


def _extract_token(event: dict) -> Optional[str]:
    authorization = get_header(event, "authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[len("bearer "):].strip()
    return get_header(event, TOKEN_HEADER) or get_query_param(event, TOKEN_QUERY_PARAM)


def verify_request(
    event: dict,
    raw_body: bytes,
    settings: WebhookSettings,
    secret: Optional[str],
) -> bool:
    """Authenticate an API Gateway webhook event under the deployment's scheme.

    Args:
        event: API Gateway proxy event (headers and query parameters)
        raw_body: Exact body bytes as sent
        settings: Deployment settings selecting the scheme
        secret: Shared secret for hmac/token modes (None if unavailable)

    Returns:
        True only if the request is authentic
    """
    if settings.auth_mode == "hmac":
        return verify_hmac_signature(
            raw_body,
            get_header(event, settings.signature_header),
            secret,
            settings.signature_encoding,
        )

    if settings.auth_mode == "public_key":
        return verify_public_key_signature(
            raw_body,
            get_header(event, PUBLIC_KEY_SIGNATURE_HEADER),
            settings.public_key_pem,
        )

    if settings.auth_mode == "token":
        return verify_shared_token(_extract_token(event), secret)

    logger.error(f"Unsupported auth mode {settings.auth_mode!r}; rejecting request")
    return False
