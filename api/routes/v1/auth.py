"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; returns {user, tokens} (201)
  POST /api/v1/auth/login      -- password login; returns {user, tokens}
  POST /api/v1/auth/refresh    -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/logout     -- invalidate one refresh token (requires auth)
  GET  /api/v1/auth/profile    -- current user (requires auth)
  PUT  /api/v1/auth/profile    -- update own name/email (requires auth)

Security:
  POST /register and /login are rate-limited per client (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- never inline the lookup.
  Cache-Control: no-store on every response that carries tokens.

Handlers are thin: unpack the body, call one AuthService method, wrap the
result in the success envelope. AppError raised below propagates to the
handlers in api/main.py.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    ApiResponse,
    AuthOut,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokensOut,
    UserOut,
)
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.service import AuthService
from core.config import get_settings
from core.errors import BAD_REQUEST, AppError

_settings = get_settings()

# Auth policy:
# - POST /auth/register, /auth/login, /auth/refresh: public
# - POST /auth/logout:                               requires auth (get_current_principal)
# - GET/PUT /auth/profile:                           requires auth (get_current_principal)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=ApiResponse[AuthOut], status_code=201)
@limiter.limit(_settings.login_rate_limit)  # must be BELOW @router so the router registers the limited wrapper
def register(request: Request, response: Response, body: RegisterRequest) -> ApiResponse[AuthOut]:
    """Create an account and start a session in one step."""
    if not body.email or not body.password or not body.name:
        raise AppError("Email, password, and name are required", BAD_REQUEST, "MISSING_FIELDS")

    user, pair = _service(request).register(body.email, body.password, body.name)
    _no_store(response)
    return ApiResponse(
        data=AuthOut(user=UserOut.from_domain(user), tokens=TokensOut.from_domain(pair)),
        message="User registered successfully",
    )


@router.post("/auth/login", response_model=ApiResponse[AuthOut])
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> ApiResponse[AuthOut]:
    """Authenticate with email and password.

    Returns the same INVALID_CREDENTIALS error for an unknown email and a wrong
    password to avoid leaking which addresses have accounts.
    """
    if not body.email or not body.password:
        raise AppError("Email and password are required", BAD_REQUEST, "MISSING_FIELDS")

    user, pair = _service(request).login(body.email, body.password)
    _no_store(response)
    return ApiResponse(
        data=AuthOut(user=UserOut.from_domain(user), tokens=TokensOut.from_domain(pair)),
        message="Login successful",
    )


@router.post("/auth/refresh", response_model=ApiResponse[TokensOut])
def refresh(request: Request, response: Response, body: RefreshRequest) -> ApiResponse[TokensOut]:
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    if not body.refresh_token:
        raise AppError("Refresh token is required", BAD_REQUEST, "MISSING_REFRESH_TOKEN")

    pair = _service(request).refresh(body.refresh_token)
    _no_store(response)
    return ApiResponse(data=TokensOut.from_domain(pair), message="Token refreshed successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=ApiResponse[None])
def logout(
    request: Request,
    body: RefreshRequest,
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[None]:
    """End one session. Other devices keep their own refresh tokens."""
    if not body.refresh_token:
        raise AppError("Refresh token is required", BAD_REQUEST, "MISSING_REFRESH_TOKEN")

    _service(request).logout(body.refresh_token)
    return ApiResponse(message="Logout successful")


@router.get("/auth/profile", response_model=ApiResponse[UserOut])
def get_profile(request: Request, principal: Principal = Depends(get_current_principal)) -> ApiResponse[UserOut]:
    user = _service(request).get_profile(principal.id)
    return ApiResponse(data=UserOut.from_domain(user))


@router.put("/auth/profile", response_model=ApiResponse[UserOut])
def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ApiResponse[UserOut]:
    user = _service(request).update_profile(principal.id, name=body.name, email=body.email)
    return ApiResponse(data=UserOut.from_domain(user), message="Profile updated successfully")
