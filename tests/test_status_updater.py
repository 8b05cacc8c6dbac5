"""
Tests for active/suspended status updates (functions/shared/status_updater.py).
"""

from shared.config import WebhookSettings
from shared.identity_store import identity_key
from shared.status_updater import update_active_status


def _profile(profiles_table, user_id):
    return profiles_table.get_item(Key={"pk": user_id, "sk": "PROFILE"})["Item"]


class TestUnknownContact:
    """Status events never create accounts."""

    def test_unknown_email_is_skipped(self, stores, identities_table, profiles_table):
        identities, profiles = stores

        result = update_active_status(identities, profiles, "ghost@example.com", active=False)

        assert result.skipped is True
        assert result.to_dict() == {"skipped": True, "reason": "User not found by email"}
        assert identities_table.scan()["Items"] == []
        assert profiles_table.scan()["Items"] == []

    def test_identity_without_profile_gets_minimal_profile(self, stores, profiles_table):
        identities, profiles = stores
        identity = identities.create_user("orphan@example.com", {})

        result = update_active_status(identities, profiles, "orphan@example.com", active=False, disabled_message="Paused")

        assert result.skipped is False
        profile = _profile(profiles_table, identity.user_id)
        assert profile["role"] == "user"
        assert profile["active"] is False
        assert profile["preferences"] == {"disabled_message": "Paused", "initial_credits": 100, "monthly_credits": 100}

    def test_minimal_profile_uses_configured_credit_defaults(self, stores, profiles_table):
        identities, profiles = stores
        identity = identities.create_user("orphan@example.com", {})
        settings = WebhookSettings(initial_credits=250, monthly_credits=50)

        update_active_status(identities, profiles, "orphan@example.com", active=True, settings=settings)

        preferences = _profile(profiles_table, identity.user_id)["preferences"]
        assert preferences["initial_credits"] == 250
        assert preferences["monthly_credits"] == 50


class TestSuspendAndRecover:
    """Tests for payment failure, cancellation and recovery transitions."""

    def test_suspend_sets_message_and_keeps_role(self, stores, seeded_pro_account, profiles_table):
        identities, profiles = stores

        result = update_active_status(
            identities,
            profiles,
            seeded_pro_account["email"],
            active=False,
            disabled_message="Your last payment failed.",
        )

        assert result.to_dict() == {"userId": seeded_pro_account["user_id"], "updatedActive": False}
        profile = _profile(profiles_table, seeded_pro_account["user_id"])
        assert profile["active"] is False
        assert profile["role"] == "pro"
        assert profile["preferences"]["disabled_message"] == "Your last payment failed."
        assert profile["preferences"]["theme"] == "dark"
        assert profile["preferences"]["external_contact_id"] == "ct_pro"

    def test_duplicate_delivery_is_skipped_without_write(self, stores, seeded_pro_account, profiles_table):
        identities, profiles = stores
        kwargs = dict(active=False, disabled_message="Cancelled")

        update_active_status(identities, profiles, seeded_pro_account["email"], **kwargs)
        version_after_first = _profile(profiles_table, seeded_pro_account["user_id"])["version"]

        result = update_active_status(identities, profiles, seeded_pro_account["email"], **kwargs)

        assert result.to_dict() == {
            "skipped": True,
            "reason": "Active status already set",
            "userId": seeded_pro_account["user_id"],
        }
        assert _profile(profiles_table, seeded_pro_account["user_id"])["version"] == version_after_first

    def test_recovery_clears_message_keeps_contact_id(self, stores, seeded_pro_account, profiles_table):
        identities, profiles = stores
        update_active_status(identities, profiles, seeded_pro_account["email"], active=False, disabled_message="Failed")

        result = update_active_status(identities, profiles, seeded_pro_account["email"], active=True)

        assert result.updated_active is True
        profile = _profile(profiles_table, seeded_pro_account["user_id"])
        assert profile["active"] is True
        assert "disabled_message" not in profile["preferences"]
        assert profile["preferences"]["external_contact_id"] == "ct_pro"
        assert profile["role"] == "pro"

    def test_already_active_recovery_is_skipped(self, stores, seeded_pro_account):
        identities, profiles = stores

        result = update_active_status(identities, profiles, seeded_pro_account["email"], active=True)

        assert result.skipped is True
        assert result.reason == "Active status already set"

    def test_message_change_is_applied(self, stores, seeded_pro_account, profiles_table):
        """Cancellation after a payment failure replaces the message."""
        identities, profiles = stores
        email = seeded_pro_account["email"]
        update_active_status(identities, profiles, email, active=False, disabled_message="Payment failed")

        result = update_active_status(identities, profiles, email, active=False, disabled_message="Cancelled")

        assert result.skipped is False
        assert _profile(profiles_table, seeded_pro_account["user_id"])["preferences"]["disabled_message"] == "Cancelled"

    def test_new_contact_id_is_recorded(self, stores, seeded_pro_account, profiles_table):
        identities, profiles = stores

        result = update_active_status(
            identities, profiles, seeded_pro_account["email"], active=True, external_contact_id="ct_moved"
        )

        assert result.skipped is False
        profile = _profile(profiles_table, seeded_pro_account["user_id"])
        assert profile["preferences"]["external_contact_id"] == "ct_moved"

    def test_admin_role_untouched(self, stores, seeded_admin_account, profiles_table):
        identities, profiles = stores

        update_active_status(identities, profiles, seeded_admin_account["email"], active=False, disabled_message="x")

        assert _profile(profiles_table, seeded_admin_account["user_id"])["role"] == "admin"

    def test_email_lookup_is_case_insensitive(self, stores, seeded_pro_account, identities_table):
        identities, profiles = stores

        result = update_active_status(identities, profiles, "  PRO@Example.com ", active=False)

        assert result.user_id == seeded_pro_account["user_id"]
        assert "Item" in identities_table.get_item(Key=identity_key("pro@example.com"))
