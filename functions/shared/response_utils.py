"""
Response utilities for Lambda handlers.

Provides consistent response formatting for success and error responses.
"""

import json
from decimal import Decimal
from typing import Optional, Any, Dict

from .constants import DEFAULT_SIGNATURE_HEADER, PUBLIC_KEY_SIGNATURE_HEADER, TOKEN_HEADER

# Webhook senders are servers, so any origin may preflight the endpoint
CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": ", ".join(
        [
            "authorization",
            "content-type",
            DEFAULT_SIGNATURE_HEADER,
            PUBLIC_KEY_SIGNATURE_HEADER,
            TOKEN_HEADER,
        ]
    ),
}


def decimal_default(obj: Any) -> Any:
    """JSON serializer for Decimal types from DynamoDB."""
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def json_response(
    status_code: int, body: dict, headers: Optional[dict] = None
) -> dict:
    """
    Create standardized JSON response.

    Args:
        status_code: HTTP status code
        body: Response body dictionary
        headers: Optional additional headers

    Returns:
        Lambda response dictionary
    """
    response_headers = {"Content-Type": "application/json"}
    response_headers.update(CORS_HEADERS)
    if headers:
        response_headers.update(headers)

    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(body, default=decimal_default),
    }


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
    event_id: Optional[str] = None,
) -> dict:
    """
    Create an error response.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message
        headers: Additional response headers
        details: Optional additional error details
        event_id: Webhook event id, echoed back when known

    Returns:
        Lambda response dict
    """
    body: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        body["error"]["details"] = details
    if event_id:
        body["eventId"] = event_id

    return json_response(status_code, body, headers)


def success_response(
    data: Any,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> dict:
    """
    Create a success response.

    Args:
        data: Response body data
        status_code: HTTP status code (default 200)
        headers: Additional response headers

    Returns:
        Lambda response dict
    """
    return json_response(status_code, data, headers)


def preflight_response() -> dict:
    """Answer a CORS preflight request."""
    return {
        "statusCode": 200,
        "headers": dict(CORS_HEADERS),
        "body": "ok",
    }
