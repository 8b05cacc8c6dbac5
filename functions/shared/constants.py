"""
Shared constants for CrmSync.
"""

# Role lattice: user < pro < admin
ROLE_ORDER = {"user": 0, "pro": 1, "admin": 2}

DEFAULT_ROLE = "user"

# Roles the webhook is allowed to grant; admin is never assigned automatically
ASSIGNABLE_ROLES = ("user", "pro")

# Preference keys owned by the webhook
PREF_EXTERNAL_CONTACT_ID = "external_contact_id"
PREF_INITIAL_CREDITS = "initial_credits"
PREF_MONTHLY_CREDITS = "monthly_credits"
PREF_DISABLED_MESSAGE = "disabled_message"

# Credit defaults applied on first profile creation
DEFAULT_INITIAL_CREDITS = 100
DEFAULT_MONTHLY_CREDITS = 100

DEFAULT_PAYMENT_FAILED_MESSAGE = (
    "Your account is paused because your last payment failed. "
    "Update your payment method to restore access."
)
DEFAULT_CANCELLATION_MESSAGE = (
    "Your subscription has been cancelled. Renew your plan to restore access."
)

# Signature verification
AUTH_MODES = ("hmac", "public_key", "token")
SIGNATURE_ENCODINGS = ("hex", "base64")
DEFAULT_SIGNATURE_HEADER = "x-webhook-signature"
PUBLIC_KEY_SIGNATURE_HEADER = "x-wh-signature"
TOKEN_HEADER = "x-webhook-secret"
TOKEN_QUERY_PARAM = "secret"

# Marks identities this webhook created; only those are sent an invitation
IDENTITY_SOURCE = "crm_webhook"

# Secrets Manager errors that mean the secret is misconfigured rather than
# temporarily unreachable
SECRET_MISCONFIGURED_ERRORS = (
    "ResourceNotFoundException",
    "InvalidRequestException",
    "InvalidParameterException",
    "DecryptionFailure",
)

# Optimistic concurrency on profile writes
PROFILE_WRITE_ATTEMPTS = 3

# Audit trail retention
WEBHOOK_EVENT_TTL_DAYS = 90

# DynamoDB throttling error codes that should trigger retry
THROTTLING_ERRORS = (
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ThrottlingException",
    "InternalServerError",
)
