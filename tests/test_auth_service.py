"""Unit tests for auth/service.py -- session lifecycle against a real UserStore.

Covers:
- register(): validation codes, case-folded duplicate detection, stored shape
- login(): identical error for unknown email and wrong password, deactivated
  accounts, multiple concurrent sessions
- refresh(): rotation, replay of the old token, wrong token type, expired
  record cleanup, inactive user, lost rotation race
- logout(): idempotent
- profile read/update rules
- purge_expired_tokens(): removes only expired records
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from auth.tokens import REFRESH, create_token
from core.errors import AppError

PASSWORD = "Passw0rd1"


def _code(exc_info) -> str:
    return exc_info.value.code


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_stores_folded_email_and_trimmed_name(self, auth_service, user_store):
        user, pair = auth_service.register("Alice@Example.COM", PASSWORD, "  Alice  ")
        assert user.email == "alice@example.com"
        assert user.name == "Alice"
        assert user.is_active is True
        assert user.password_hash != PASSWORD
        assert pair.access_token and pair.refresh_token
        assert user_store.get_refresh_token(pair.refresh_token) is not None

    def test_register_invalid_email(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.register("not-an-email", PASSWORD, "Alice")
        assert _code(exc_info) == "INVALID_EMAIL"
        assert exc_info.value.status_code == 400

    def test_register_weak_password_lists_every_problem(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.register("a@example.com", "short", "Alice")
        assert _code(exc_info) == "WEAK_PASSWORD"
        assert exc_info.value.message == "Password must be at least 8 characters long"
        assert len(exc_info.value.details) == 3

    def test_register_invalid_name(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.register("a@example.com", PASSWORD, " A ")
        assert _code(exc_info) == "INVALID_NAME"

    def test_register_duplicate_email_is_case_insensitive(self, auth_service):
        auth_service.register("bob@example.com", PASSWORD, "Bob")
        with pytest.raises(AppError) as exc_info:
            auth_service.register("BOB@example.com", PASSWORD, "Bobby")
        assert _code(exc_info) == "USER_EXISTS"
        assert exc_info.value.status_code == 409


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success_opens_additional_session(self, auth_service, user_store):
        user, _ = auth_service.register("carol@example.com", PASSWORD, "Carol")
        logged_in, pair = auth_service.login("CAROL@example.com", PASSWORD)
        assert logged_in.id == user.id
        assert user_store.count_refresh_tokens(user.id) == 2
        assert user_store.get_refresh_token(pair.refresh_token) is not None

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, auth_service):
        auth_service.register("dave@example.com", PASSWORD, "Dave")
        with pytest.raises(AppError) as unknown:
            auth_service.login("nobody@example.com", PASSWORD)
        with pytest.raises(AppError) as wrong:
            auth_service.login("dave@example.com", "Wr0ngPassword")
        assert _code(unknown) == _code(wrong) == "INVALID_CREDENTIALS"
        assert unknown.value.message == wrong.value.message
        assert unknown.value.status_code == wrong.value.status_code == 401

    def test_unknown_email_still_runs_bcrypt(self, auth_service):
        with patch("auth.service.tokens.burn_password_check") as burn:
            with pytest.raises(AppError):
                auth_service.login("ghost@example.com", PASSWORD)
        burn.assert_called_once_with(PASSWORD)

    def test_login_requires_password(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.login("dave@example.com", "")
        assert _code(exc_info) == "PASSWORD_REQUIRED"

    def test_login_invalid_email_format(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.login("dave", PASSWORD)
        assert _code(exc_info) == "INVALID_EMAIL"

    def test_deactivated_account_cannot_login(self, auth_service, user_store):
        user, _ = auth_service.register("erin@example.com", PASSWORD, "Erin")
        user_store.update_user(user.id, is_active=False)
        with pytest.raises(AppError) as exc_info:
            auth_service.login("erin@example.com", PASSWORD)
        assert _code(exc_info) == "ACCOUNT_DEACTIVATED"


# ---------------------------------------------------------------------------
# refresh / logout
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_rotates_the_stored_token(self, auth_service, user_store):
        user, pair = auth_service.register("frank@example.com", PASSWORD, "Frank")
        new_pair = auth_service.refresh(pair.refresh_token)
        assert new_pair.refresh_token != pair.refresh_token
        assert user_store.get_refresh_token(pair.refresh_token) is None
        assert user_store.get_refresh_token(new_pair.refresh_token) is not None
        assert user_store.count_refresh_tokens(user.id) == 1

    def test_old_refresh_token_cannot_be_replayed(self, auth_service):
        _, pair = auth_service.register("grace@example.com", PASSWORD, "Grace")
        auth_service.refresh(pair.refresh_token)
        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(pair.refresh_token)
        assert _code(exc_info) == "INVALID_REFRESH_TOKEN"

    def test_access_token_is_not_a_refresh_token(self, auth_service):
        _, pair = auth_service.register("heidi@example.com", PASSWORD, "Heidi")
        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(pair.access_token)
        assert _code(exc_info) == "INVALID_TOKEN"

    def test_validly_signed_but_unknown_refresh_token(self, auth_service):
        user, _ = auth_service.register("ivan@example.com", PASSWORD, "Ivan")
        stray = create_token(user.id, REFRESH)
        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(stray)
        assert _code(exc_info) == "INVALID_REFRESH_TOKEN"

    def test_expired_record_is_deleted(self, auth_service, user_store):
        user, pair = auth_service.register("judy@example.com", PASSWORD, "Judy")
        record = user_store.get_refresh_token(pair.refresh_token)
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        user_store.rotate_refresh_token(record.id, pair.refresh_token, pair.refresh_token, past)

        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(pair.refresh_token)
        assert _code(exc_info) == "TOKEN_EXPIRED"
        assert user_store.get_refresh_token(pair.refresh_token) is None

    def test_aged_out_token_and_record_are_deleted(self, auth_service, user_store):
        """Token and record expire together, as they do when a session is simply left alone."""
        user, _ = auth_service.register("jill@example.com", PASSWORD, "Jill")
        stale = create_token(user.id, REFRESH, expire_seconds=-5)
        past = (datetime.now(timezone.utc) - timedelta(seconds=5)).isoformat()
        user_store.create_refresh_token(user.id, stale, past)

        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(stale)
        assert _code(exc_info) == "TOKEN_EXPIRED"
        assert user_store.get_refresh_token(stale) is None

    def test_inactive_user_cannot_refresh(self, auth_service, user_store):
        user, pair = auth_service.register("ken@example.com", PASSWORD, "Ken")
        user_store.update_user(user.id, is_active=False)
        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(pair.refresh_token)
        assert _code(exc_info) == "USER_INACTIVE"

    def test_lost_rotation_race_is_rejected(self, auth_service, user_store):
        """Simulate a concurrent refresh winning between lookup and rotation."""
        _, pair = auth_service.register("leo@example.com", PASSWORD, "Leo")
        with patch.object(user_store, "rotate_refresh_token", return_value=False):
            with pytest.raises(AppError) as exc_info:
                auth_service.refresh(pair.refresh_token)
        assert _code(exc_info) == "INVALID_REFRESH_TOKEN"

    def test_logout_is_idempotent(self, auth_service, user_store):
        _, pair = auth_service.register("mallory@example.com", PASSWORD, "Mallory")
        auth_service.logout(pair.refresh_token)
        auth_service.logout(pair.refresh_token)
        assert user_store.get_refresh_token(pair.refresh_token) is None
        with pytest.raises(AppError) as exc_info:
            auth_service.refresh(pair.refresh_token)
        assert _code(exc_info) == "INVALID_REFRESH_TOKEN"

    def test_purge_removes_only_expired_tokens(self, auth_service, user_store):
        user, live = auth_service.register("nia@example.com", PASSWORD, "Nia")
        _, stale = auth_service.login("nia@example.com", PASSWORD)
        record = user_store.get_refresh_token(stale.refresh_token)
        past = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()
        user_store.rotate_refresh_token(record.id, stale.refresh_token, stale.refresh_token, past)

        assert auth_service.purge_expired_tokens() == 1
        assert user_store.get_refresh_token(live.refresh_token) is not None
        assert user_store.get_refresh_token(stale.refresh_token) is None


# ---------------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_get_profile_unknown_user(self, auth_service):
        with pytest.raises(AppError) as exc_info:
            auth_service.get_profile("missing")
        assert _code(exc_info) == "USER_NOT_FOUND"
        assert exc_info.value.status_code == 404

    def test_update_requires_a_field(self, auth_service):
        user, _ = auth_service.register("olga@example.com", PASSWORD, "Olga")
        with pytest.raises(AppError) as exc_info:
            auth_service.update_profile(user.id)
        assert _code(exc_info) == "MISSING_FIELDS"

    def test_update_name_and_email(self, auth_service):
        user, _ = auth_service.register("pat@example.com", PASSWORD, "Pat")
        updated = auth_service.update_profile(user.id, name=" Patricia ", email="Patricia@Example.com")
        assert updated.name == "Patricia"
        assert updated.email == "patricia@example.com"

    def test_update_to_own_email_is_allowed(self, auth_service):
        user, _ = auth_service.register("quinn@example.com", PASSWORD, "Quinn")
        updated = auth_service.update_profile(user.id, email="QUINN@example.com")
        assert updated.email == "quinn@example.com"

    def test_update_to_taken_email(self, auth_service):
        auth_service.register("rita@example.com", PASSWORD, "Rita")
        user, _ = auth_service.register("sam@example.com", PASSWORD, "Sam")
        with pytest.raises(AppError) as exc_info:
            auth_service.update_profile(user.id, email="RITA@example.com")
        assert _code(exc_info) == "EMAIL_TAKEN"
        assert exc_info.value.status_code == 409

    def test_update_invalid_name(self, auth_service):
        user, _ = auth_service.register("tom@example.com", PASSWORD, "Tom")
        with pytest.raises(AppError) as exc_info:
            auth_service.update_profile(user.id, name="T")
        assert _code(exc_info) == "INVALID_NAME"
