"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as habits/store.py).
UserStore is the repository; _row_to_user / _row_to_refresh_token are the
mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by a UNIQUE constraint on the lower-cased
  value. Callers always pass emails through _fold() first; the constraint is
  the backstop for two concurrent registrations with the same address.

  Refresh rotation (rotate_refresh_token) is a conditional UPDATE guarded by
  the old token value. Two concurrent refreshes of the same token both read
  the record, but only one UPDATE matches -- the loser sees rowcount 0 and
  the service rejects it. One stored record can therefore never produce two
  live token pairs.

DB path: atomic_systems.db in the working directory unless DATABASE_URL says
otherwise. The habit tables live in the same database.

Layer rule: no imports from api/ or habits/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import RefreshToken, User

_DEFAULT_DB_URL = "sqlite:///./atomic_systems.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-cased
    Column("name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_premium", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("token", Text, nullable=False, unique=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _fold(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and RefreshToken entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@b.co", name="Al", password_hash=hash_password("Secret123")))
        user = store.get_by_email("A@B.CO")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> None:
        """Round-trip a trivial query. Raises whatever the driver raises when the DB is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        The service checks first; the constraint catches the concurrent case.
        """
        user_id = _new_id()
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=_fold(user.email),
                    name=user.name,
                    password_hash=user.password_hash,
                    is_active=user.is_active,
                    is_premium=user.is_premium,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _fold(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_taken(self, email: str, exclude_user_id: str | None = None) -> bool:
        """Return True if another account already uses this email (case-insensitive)."""
        stmt = _users.select().where(_users.c.email == _fold(email))
        if exclude_user_id is not None:
            stmt = stmt.where(_users.c.id != exclude_user_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone() is not None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields: name, email, is_active, is_premium, password_hash.

        Stamps updated_at. Returns True if a row was updated, False if
        user_id was not found.
        """
        if "email" in fields:
            fields["email"] = _fold(fields["email"])
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: str, token: str, expires_at: str) -> str:
        token_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token_id,
                    token=token,
                    user_id=user_id,
                    expires_at=expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return token_id

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def rotate_refresh_token(self, token_id: str, old_token: str, new_token: str, expires_at: str) -> bool:
        """Replace the token value and expiry of one record in place.

        The WHERE clause matches on both id and the old token value. Returns
        False when another request already rotated or deleted the record.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.token == old_token))
                .values(token=new_token, expires_at=expires_at)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_token(self, token: str) -> bool:
        """Delete by token value. Returns False if nothing matched (already logged out)."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_token_by_id(self, token_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.id == token_id))
            conn.commit()

    def count_refresh_tokens(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id)).fetchall()
        return len(rows)

    def purge_expired_refresh_tokens(self, now_iso: str | None = None) -> int:
        """Delete every refresh token whose expires_at is in the past. Returns the number removed.

        expires_at values are all UTC isoformat strings of the same shape, so
        lexical comparison matches chronological order.
        """
        cutoff = now_iso or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        is_premium=bool(row.is_premium),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
