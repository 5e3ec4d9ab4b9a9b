"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: Authorization: Bearer <access token>.

get_current_principal() is the strict variant: it raises AppError with a
specific code for each failure (MISSING_TOKEN, INVALID_AUTH_FORMAT,
TOKEN_EXPIRED, INVALID_TOKEN), which api/main.py renders as a 401.

try_get_principal() is the soft variant: returns None on any failure. It does
not touch the request state either -- callers get the Principal as a value.

CORS preflight (OPTIONS) requests never reach these dependencies: the CORS
middleware answers them before routing.

Layer rule: no imports from api/ or habits/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Principal
from auth.tokens import ACCESS, verify_token
from core.errors import UNAUTHORIZED, AppError

_SCHEME = "Bearer "


def _principal_from_header(auth_header: str | None) -> Principal:
    if not auth_header:
        raise AppError("Authorization header is required", UNAUTHORIZED, "MISSING_TOKEN")
    if not auth_header.startswith(_SCHEME):
        raise AppError(
            'Invalid authorization format. Use "Bearer <token>"',
            UNAUTHORIZED,
            "INVALID_AUTH_FORMAT",
        )
    token = auth_header[len(_SCHEME) :].strip()
    if not token:
        raise AppError("Token is required", UNAUTHORIZED, "MISSING_TOKEN")

    user_id, token_type = verify_token(token)
    if token_type != ACCESS:
        raise AppError("Invalid token type", UNAUTHORIZED, "INVALID_TOKEN")
    return Principal(id=user_id, type=token_type)


def get_current_principal(request: Request) -> Principal:
    """Require a valid access token. Raises AppError(401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    return _principal_from_header(request.headers.get("Authorization"))


def try_get_principal(request: Request) -> Principal | None:
    """Return the caller's Principal, or None if the request is anonymous or the token is bad.

    Never raises.
    """
    try:
        return _principal_from_header(request.headers.get("Authorization"))
    except AppError:
        return None
