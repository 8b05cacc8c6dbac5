"""
Shared pytest fixtures for CrmSync tests.
"""

import os
import sys

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))
# scripts/ for the provisioning helper
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    yield
    try:
        from shared.aws_clients import reset_clients
        reset_clients()
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def reset_webhook_secret_cache():
    """Reset the webhook secret cache between tests to prevent pollution."""
    yield
    try:
        from shared.config import reset_secret_cache
        reset_secret_cache()
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def webhook_env(monkeypatch):
    """Baseline webhook configuration; tests override what they need."""
    monkeypatch.setenv("IDENTITIES_TABLE", "crmsync-identities")
    monkeypatch.setenv("PROFILES_TABLE", "crmsync-profiles")
    monkeypatch.setenv("WEBHOOK_EVENTS_TABLE", "crmsync-webhook-events")
    monkeypatch.setenv("INVITE_EMAIL_SENDER", "noreply@crmsync.dev")
    monkeypatch.setenv("CRM_PRO_PRODUCT_IDS", "prod_pro_1,prod_pro_2")
    monkeypatch.setenv("CRM_TRIAL_PRODUCT_IDS", "prod_trial_1")
    monkeypatch.setenv("WEBHOOK_AUTH_MODE", "hmac")
    monkeypatch.setenv("WEBHOOK_SIGNATURE_ENCODING", "hex")
    monkeypatch.setenv("WEBHOOK_SECRET_ARN", "crmsync/webhook-secret")
    monkeypatch.setenv("APP_LOGIN_URL", "https://app.crmsync.dev/login")
    for name in (
        "WEBHOOK_SIGNATURE_HEADER",
        "WEBHOOK_PUBLIC_KEY_PEM",
        "SEND_INVITES",
        "DEFAULT_INITIAL_CREDITS",
        "DEFAULT_MONTHLY_CREDITS",
        "PAYMENT_FAILED_MESSAGE",
        "CANCELLATION_MESSAGE",
    ):
        monkeypatch.delenv(name, raising=False)


def create_dynamodb_tables(dynamodb):
    """Create all DynamoDB tables the webhook uses.

    Delegates to the provisioning script so tests and deployments share one
    table definition.
    """
    from create_tables import table_definitions

    for definition in table_definitions("crmsync"):
        dynamodb.create_table(**definition)


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


@pytest.fixture
def ses_client(mock_dynamodb):
    """SES with a verified sender so invitations can be sent."""
    ses = boto3.client("ses", region_name="us-east-1")
    ses.verify_email_identity(EmailAddress="noreply@crmsync.dev")
    return ses


@pytest.fixture
def identities_table(mock_dynamodb):
    return mock_dynamodb.Table("crmsync-identities")


@pytest.fixture
def profiles_table(mock_dynamodb):
    return mock_dynamodb.Table("crmsync-profiles")


@pytest.fixture
def events_table(mock_dynamodb):
    return mock_dynamodb.Table("crmsync-webhook-events")


@pytest.fixture
def stores(mock_dynamodb, ses_client):
    """Identity and profile stores bound to the mocked tables."""
    from shared.identity_store import IdentityStore
    from shared.profile_store import ProfileStore

    return IdentityStore(), ProfileStore()


@pytest.fixture
def seeded_pro_account(identities_table, profiles_table):
    """An existing pro account with an unrelated preference and a contact id."""
    from shared.identity_store import identity_key, user_id_for_email

    email = "pro@example.com"
    user_id = user_id_for_email(email)
    identities_table.put_item(
        Item={
            **identity_key(email),
            "user_id": user_id,
            "email": email,
            "metadata": {"full_name": "Pat Pro", "external_contact_id": "ct_pro"},
            "created_at": "2024-01-01T00:00:00+00:00",
            "invited_at": "2024-01-01T00:00:00+00:00",
        }
    )
    profiles_table.put_item(
        Item={
            "pk": user_id,
            "sk": "PROFILE",
            "role": "pro",
            "active": True,
            "preferences": {"external_contact_id": "ct_pro", "theme": "dark"},
            "full_name": "Pat Pro",
            "status_updated_at": "2024-01-01T00:00:00+00:00",
            "version": 3,
        }
    )
    return {"email": email, "user_id": user_id}


@pytest.fixture
def seeded_admin_account(identities_table, profiles_table):
    """An existing admin account."""
    from shared.identity_store import identity_key, user_id_for_email

    email = "admin@example.com"
    user_id = user_id_for_email(email)
    identities_table.put_item(
        Item={
            **identity_key(email),
            "user_id": user_id,
            "email": email,
            "metadata": {},
            "created_at": "2024-01-01T00:00:00+00:00",
        }
    )
    profiles_table.put_item(
        Item={
            "pk": user_id,
            "sk": "PROFILE",
            "role": "admin",
            "active": True,
            "preferences": {},
            "version": 1,
        }
    )
    return {"email": email, "user_id": user_id}


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "POST",
        "path": "/webhooks/crm",
        "headers": {"content-type": "application/json"},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "req-test-123",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }
