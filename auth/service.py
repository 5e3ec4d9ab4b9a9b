"""
auth/service.py -- Session lifecycle: registration, login, refresh, logout, profile.

AuthService owns every rule about who may hold tokens. Routes only unpack the
request body and call one method; stores only persist.

Refresh token lifecycle (one record per login session):

    issued --refresh--> rotated (same record, new value) --refresh--> ...
       |                                                             |
       +------------- logout (deleted) / expiry purge (deleted) -----+

Login never revokes earlier sessions -- a user may be signed in on several
devices at once, each with its own record.

Layer rule: no imports from api/ or habits/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth import tokens
from auth.models import TokenPair, User
from auth.store import UserStore
from auth.validation import is_valid_email, name_problem, password_problems
from core.config import get_settings
from core.errors import BAD_REQUEST, CONFLICT, NOT_FOUND, UNAUTHORIZED, AppError

logger = logging.getLogger("atomic.auth")

_INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    def __init__(self, store: UserStore, refresh_token_days: int | None = None) -> None:
        self.store = store
        self.refresh_token_days = refresh_token_days or get_settings().refresh_token_expire_days

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> tuple[User, TokenPair]:
        if not is_valid_email(email):
            raise AppError("Invalid email format", BAD_REQUEST, "INVALID_EMAIL")
        problems = password_problems(password)
        if problems:
            raise AppError(problems[0], BAD_REQUEST, "WEAK_PASSWORD", details=problems)
        bad_name = name_problem(name)
        if bad_name:
            raise AppError(bad_name, BAD_REQUEST, "INVALID_NAME")

        if self.store.email_taken(email):
            raise AppError("User already exists with this email", CONFLICT, "USER_EXISTS")

        new_user = User(email=email, name=name.strip(), password_hash=tokens.hash_password(password))
        try:
            user_id = self.store.create_user(new_user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same address.
            raise AppError("User already exists with this email", CONFLICT, "USER_EXISTS") from exc

        user = self.store.get_by_id(user_id)
        logger.info("Registered user %s", user_id)
        return user, self._issue_session(user_id)

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """Authenticate by email and password.

        Unknown email and wrong password produce the same code and message.
        bcrypt runs in both cases (against a dummy hash for unknown emails) so
        response time does not reveal which one happened.
        """
        if not is_valid_email(email):
            raise AppError("Invalid email format", BAD_REQUEST, "INVALID_EMAIL")
        if not password:
            raise AppError("Password is required", BAD_REQUEST, "PASSWORD_REQUIRED")

        user = self.store.get_by_email(email)
        if user is None or not user.password_hash:
            tokens.burn_password_check(password)
            raise AppError(_INVALID_CREDENTIALS, UNAUTHORIZED, "INVALID_CREDENTIALS")
        if not tokens.verify_password(password, user.password_hash):
            raise AppError(_INVALID_CREDENTIALS, UNAUTHORIZED, "INVALID_CREDENTIALS")
        if not user.is_active:
            raise AppError("Account is deactivated", UNAUTHORIZED, "ACCOUNT_DEACTIVATED")

        return user, self._issue_session(user.id)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        try:
            user_id, token_type = tokens.verify_token(refresh_token)
        except AppError as exc:
            # The JWT and its record share one lifetime; drop the record with it.
            if exc.code == "TOKEN_EXPIRED":
                self.store.delete_refresh_token(refresh_token)
            raise
        if token_type != tokens.REFRESH:
            raise AppError("Invalid token type", UNAUTHORIZED, "INVALID_TOKEN")

        stored = self.store.get_refresh_token(refresh_token)
        if stored is None:
            raise AppError("Invalid refresh token", UNAUTHORIZED, "INVALID_REFRESH_TOKEN")

        if _parse_iso(stored.expires_at) < datetime.now(timezone.utc):
            self.store.delete_refresh_token_by_id(stored.id)
            raise AppError("Refresh token has expired", UNAUTHORIZED, "TOKEN_EXPIRED")

        user = self.store.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AppError("User not found or inactive", UNAUTHORIZED, "USER_INACTIVE")

        pair = tokens.create_token_pair(user_id)
        rotated = self.store.rotate_refresh_token(stored.id, refresh_token, pair.refresh_token, self._expiry())
        if not rotated:
            logger.warning("Refresh token for user %s was rotated concurrently; rejecting", user_id)
            raise AppError("Invalid refresh token", UNAUTHORIZED, "INVALID_REFRESH_TOKEN")
        return pair

    def logout(self, refresh_token: str) -> None:
        """Invalidate one session. Unknown tokens are not an error."""
        self.store.delete_refresh_token(refresh_token)

    def purge_expired_tokens(self) -> int:
        removed = self.store.purge_expired_refresh_tokens()
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise AppError("User not found", NOT_FOUND, "USER_NOT_FOUND")
        return user

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> User:
        if not name and not email:
            raise AppError("At least one field (name or email) is required", BAD_REQUEST, "MISSING_FIELDS")

        updates: dict = {}
        if name:
            bad_name = name_problem(name)
            if bad_name:
                raise AppError(bad_name, BAD_REQUEST, "INVALID_NAME")
            updates["name"] = name.strip()
        if email:
            if not is_valid_email(email):
                raise AppError("Invalid email format", BAD_REQUEST, "INVALID_EMAIL")
            if self.store.email_taken(email, exclude_user_id=user_id):
                raise AppError("Email is already taken", CONFLICT, "EMAIL_TAKEN")
            updates["email"] = email

        try:
            updated = self.store.update_user(user_id, **updates)
        except IntegrityError as exc:
            raise AppError("Email is already taken", CONFLICT, "EMAIL_TAKEN") from exc
        if not updated:
            raise AppError("User not found", NOT_FOUND, "USER_NOT_FOUND")
        return self.store.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expiry(self) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=self.refresh_token_days)).isoformat()

    def _issue_session(self, user_id: str) -> TokenPair:
        pair = tokens.create_token_pair(user_id)
        self.store.create_refresh_token(user_id, pair.refresh_token, self._expiry())
        return pair


def _parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
