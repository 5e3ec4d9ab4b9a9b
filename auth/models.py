"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in habits/models.py -- dataclasses own domain shape; stores and services do
the work.

Layer rule: no imports from api/ or habits/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account holder. Owns every identity area, system and goal transitively.

    email is stored lower-cased; all lookups case-fold first, so uniqueness is
    effectively case-insensitive.

    is_active=False means the account is suspended. Suspended users cannot log
    in or refresh, and are never physically deleted.
    """

    email: str
    name: str
    id: str | None = None
    password_hash: str | None = None
    is_active: bool = True
    is_premium: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class RefreshToken:
    """A persisted refresh grant.

    token is the signed JWT itself. Refresh rotates it in place (same id, new
    token and expires_at), so one login session maps to exactly one record for
    its whole lifetime.
    """

    user_id: str
    token: str
    expires_at: str  # ISO 8601
    id: str | None = None
    created_at: str = ""


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as resolved from a bearer token.

    Route handlers receive this from the auth dependency and pass principal.id
    to every store call. Nothing reads identity off the request object.
    """

    id: str
    type: str = "access"
