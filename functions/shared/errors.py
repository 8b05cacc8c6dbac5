"""
Standardized errors for the webhook pipeline.
"""

import json
from typing import Optional


class WebhookError(Exception):
    """Base class for errors that map to an HTTP response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class AuthenticationError(WebhookError):
    """Raised when the request signature or shared secret is missing or invalid.

    The message is deliberately generic so callers cannot tell which
    verification stage failed.
    """

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code="unauthorized",
            message=message,
            status_code=401,
        )


class MalformedPayloadError(WebhookError):
    """Raised when the request body is not valid JSON."""

    def __init__(self, message: str = "Request body must be valid JSON"):
        super().__init__(
            code="invalid_json",
            message=message,
            status_code=400,
        )


class CollaboratorUnavailableError(WebhookError):
    """Raised when the identity provider or profile datastore call fails.

    Surfaced as a 500 so the webhook sender retries the delivery.
    """

    def __init__(self, service: str, operation: str, cause: Optional[Exception] = None):
        self.service = service
        self.operation = operation
        self.cause = cause
        super().__init__(
            code="temporary_error",
            message="Temporary error, please retry",
            status_code=500,
        )

    def __str__(self) -> str:
        return f"{self.service}.{self.operation} failed: {self.cause}"


class IdentityAlreadyExistsError(Exception):
    """Raised when creating an identity whose email is already registered."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Identity already exists for {email}")


class ProfileConflictError(Exception):
    """Raised when a profile changed between read and conditional write."""

    def __init__(self, user_id: str, expected_version: Optional[int]):
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            f"Profile {user_id} was modified concurrently (expected version {expected_version})"
        )
