"""
Shared Type Definitions for the webhook Lambda.

Provides TypedDict definitions for API Gateway events, Lambda responses and
the DynamoDB items the stores read and write.
"""

from typing import TypedDict, Optional, Any


class APIGatewayEvent(TypedDict, total=False):
    """API Gateway proxy event structure."""

    httpMethod: str
    headers: dict[str, str]
    pathParameters: Optional[dict[str, str]]
    queryStringParameters: Optional[dict[str, str]]
    body: Optional[str]
    requestContext: dict[str, Any]
    resource: str
    path: str
    isBase64Encoded: bool


class LambdaResponse(TypedDict):
    """Standard Lambda response structure."""

    statusCode: int
    headers: dict[str, str]
    body: str


class IdentityItem(TypedDict, total=False):
    """Identity record as stored in DynamoDB."""

    pk: str  # EMAIL#<normalized email>
    sk: str  # IDENTITY
    user_id: str
    email: str
    metadata: dict[str, Any]
    created_at: str
    updated_at: str
    invited_at: str
    created_by: str


class ProfileItem(TypedDict, total=False):
    """Profile record as stored in DynamoDB."""

    pk: str  # user_id
    sk: str  # PROFILE
    role: str
    active: bool
    preferences: dict[str, Any]
    full_name: str
    status_updated_at: str
    updated_at: str
    version: int
