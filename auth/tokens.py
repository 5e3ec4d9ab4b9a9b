"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are both signed with
       SECRET_KEY and carry sub (user id), type ("access" | "refresh"), a
       random jti, iat and exp. The jti makes every token unique even when two
       are minted for the same user in the same second -- refresh tokens are
       stored under a UNIQUE constraint, so identical values would collide.

       Verification raises AppError with TOKEN_EXPIRED or INVALID_TOKEN so the
       client can tell "refresh and retry" apart from "log in again".

  Passwords: bcrypt used directly (no passlib wrapper). Cost factor comes from
       Settings.bcrypt_rounds. The _DUMMY_HASH constant enables timing
       equalization in AuthService.login() so response time does not reveal
       whether an email is registered.

Layer rule: no imports from api/ or habits/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.config import get_settings
from core.errors import UNAUTHORIZED, AppError

logger = logging.getLogger("atomic.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    The password policy caps length at 100 characters; bcrypt only reads the
    first 72 bytes, so over-long multibyte passwords are truncated by bcrypt
    itself. Encoding is truncated here to keep bcrypt 4.x+ from raising.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch rather than a 500.
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("atomic_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_token(user_id: str, token_type: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for user_id tagged with token_type.

    expire_seconds overrides the configured lifetime for that type; tests use
    it to mint already-expired tokens (pass a negative value).
    """
    if expire_seconds == 0:
        if token_type == REFRESH:
            expire_seconds = _settings.refresh_token_expire_days * 86400
        else:
            expire_seconds = _settings.access_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": token_type,
        "jti": secrets.token_hex(16),
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_token_pair(user_id: str) -> TokenPair:
    return TokenPair(
        access_token=create_token(user_id, ACCESS),
        refresh_token=create_token(user_id, REFRESH),
    )


def verify_token(token: str) -> tuple[str, str]:
    """Verify signature and expiry. Returns (user_id, token_type).

    Raises:
        AppError(401, TOKEN_EXPIRED): signature valid but exp has passed.
        AppError(401, INVALID_TOKEN): anything else -- bad signature, garbage
            input, missing sub/type claims.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AppError("Token has expired", UNAUTHORIZED, "TOKEN_EXPIRED") from exc
    except JWTError as exc:
        raise AppError("Invalid token", UNAUTHORIZED, "INVALID_TOKEN") from exc
    user_id = payload.get("sub")
    token_type = payload.get("type")
    if not user_id or token_type not in (ACCESS, REFRESH):
        raise AppError("Invalid token", UNAUTHORIZED, "INVALID_TOKEN")
    return user_id, token_type
