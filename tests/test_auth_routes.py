"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* and the bearer dependency.

These tests exercise the full stack: FastAPI routing -> request model parsing
-> AuthService -> UserStore -> envelope serialization -> exception handlers.

Coverage:
  - register/login happy paths return {user, tokens} without the password hash
  - missing fields map to 400 MISSING_FIELDS / MISSING_REFRESH_TOKEN
  - refresh rotation through HTTP; logout requires a bearer token
  - bearer failures: MISSING_TOKEN, INVALID_AUTH_FORMAT, TOKEN_EXPIRED,
    refresh token presented as a bearer
  - CORS preflight answered without a token
  - rate limiter keys by user id when authenticated, by address otherwise
"""

from __future__ import annotations

from starlette.requests import Request

from api.limiter import rate_limit_key
from auth.tokens import ACCESS, create_token

PASSWORD = "Passw0rd1"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterAndLogin:
    def test_register_returns_user_and_tokens(self, api_client):
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"email": "Alice@Example.com", "password": PASSWORD, "name": "Alice"},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "User registered successfully"
        user = body["data"]["user"]
        assert user["email"] == "alice@example.com"
        assert user["name"] == "Alice"
        assert user["isActive"] is True
        assert "passwordHash" not in user and "password_hash" not in user
        tokens = body["data"]["tokens"]
        assert tokens["accessToken"] and tokens["refreshToken"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_missing_fields(self, api_client):
        resp = api_client.post("/api/v1/auth/register", json={"email": "x@example.com"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_FIELDS"

    def test_register_weak_password_envelope_carries_details(self, api_client):
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"email": "weak@example.com", "password": "password", "name": "Weak"},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "WEAK_PASSWORD"
        assert isinstance(body["details"], list) and body["details"]

    def test_register_duplicate_email(self, api_client, register):
        register(email="dupe@example.com")
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"email": "DUPE@example.com", "password": PASSWORD, "name": "Other"},
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "USER_EXISTS"

    def test_login_success(self, api_client, register):
        register(email="login@example.com")
        resp = api_client.post("/api/v1/auth/login", json={"email": "login@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user"]["email"] == "login@example.com"
        assert data["tokens"]["accessToken"]

    def test_login_wrong_password(self, api_client, register):
        register(email="wrongpw@example.com")
        resp = api_client.post("/api/v1/auth/login", json={"email": "wrongpw@example.com", "password": "Nope12345"})
        assert resp.status_code == 401
        assert resp.json() == {
            "success": False,
            "error": "Invalid email or password",
            "code": "INVALID_CREDENTIALS",
        }

    def test_password_whitespace_is_significant(self, api_client):
        padded = f"  {PASSWORD}  "
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"email": "  Spaces@Example.com ", "password": padded, "name": "  Sam  "},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["data"]["user"]["email"] == "spaces@example.com"
        assert resp.json()["data"]["user"]["name"] == "Sam"

        login = "/api/v1/auth/login"
        assert api_client.post(login, json={"email": "spaces@example.com", "password": PASSWORD}).status_code == 401
        assert api_client.post(login, json={"email": " spaces@example.com", "password": padded}).status_code == 200

    def test_login_missing_fields(self, api_client):
        resp = api_client.post("/api/v1/auth/login", json={"email": "a@example.com"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_FIELDS"


class TestRefreshAndLogout:
    def test_refresh_returns_new_pair(self, api_client, user):
        old = user["tokens"]["refreshToken"]
        resp = api_client.post("/api/v1/auth/refresh", json={"refreshToken": old})
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["refreshToken"] != old
        assert data["accessToken"]

        replay = api_client.post("/api/v1/auth/refresh", json={"refreshToken": old})
        assert replay.status_code == 401
        assert replay.json()["code"] == "INVALID_REFRESH_TOKEN"

    def test_refresh_missing_token(self, api_client):
        resp = api_client.post("/api/v1/auth/refresh", json={})
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_REFRESH_TOKEN"

    def test_logout_requires_bearer(self, api_client, user):
        resp = api_client.post("/api/v1/auth/logout", json={"refreshToken": user["tokens"]["refreshToken"]})
        assert resp.status_code == 401
        assert resp.json()["code"] == "MISSING_TOKEN"

    def test_logout_invalidates_refresh_token(self, api_client, user, auth_headers):
        refresh = user["tokens"]["refreshToken"]
        resp = api_client.post("/api/v1/auth/logout", json={"refreshToken": refresh}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        again = api_client.post("/api/v1/auth/refresh", json={"refreshToken": refresh})
        assert again.json()["code"] == "INVALID_REFRESH_TOKEN"

    def test_logout_missing_refresh_token(self, api_client, auth_headers):
        resp = api_client.post("/api/v1/auth/logout", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_REFRESH_TOKEN"


class TestProfile:
    def test_get_profile(self, api_client, user, auth_headers):
        resp = api_client.get("/api/v1/auth/profile", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == user["user"]["id"]

    def test_update_profile(self, api_client, auth_headers):
        resp = api_client.put("/api/v1/auth/profile", json={"name": "Renamed"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "Renamed"

    def test_update_profile_requires_a_field(self, api_client, auth_headers):
        resp = api_client.put("/api/v1/auth/profile", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_FIELDS"

    def test_update_profile_email_taken(self, api_client, auth_headers, register):
        register(email="taken@example.com")
        resp = api_client.put("/api/v1/auth/profile", json={"email": "Taken@example.com"}, headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "EMAIL_TAKEN"


class TestBearerDependency:
    """Each way of presenting a bad credential maps to its own code."""

    def test_missing_header(self, api_client):
        resp = api_client.get("/api/v1/identity-areas")
        assert resp.status_code == 401
        assert resp.json()["code"] == "MISSING_TOKEN"

    def test_wrong_scheme(self, api_client, user):
        token = user["tokens"]["accessToken"]
        resp = api_client.get("/api/v1/identity-areas", headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_AUTH_FORMAT"

    def test_expired_access_token(self, api_client, user):
        expired = create_token(user["user"]["id"], ACCESS, expire_seconds=-5)
        resp = api_client.get("/api/v1/identity-areas", headers=bearer(expired))
        assert resp.status_code == 401
        assert resp.json()["code"] == "TOKEN_EXPIRED"

    def test_refresh_token_is_not_a_bearer(self, api_client, user):
        resp = api_client.get("/api/v1/identity-areas", headers=bearer(user["tokens"]["refreshToken"]))
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_TOKEN"

    def test_garbage_token(self, api_client):
        resp = api_client.get("/api/v1/identity-areas", headers=bearer("garbage"))
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_TOKEN"

    def test_cors_preflight_needs_no_token(self, api_client):
        resp = api_client.options(
            "/api/v1/identity-areas",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Authorization, Content-Type",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("203.0.113.7", 5555),
    }
    return Request(scope)


def test_rate_limit_key_uses_user_id_when_authenticated():
    token = create_token("user-42", ACCESS)
    assert rate_limit_key(_request({"Authorization": f"Bearer {token}"})) == "user:user-42"


def test_rate_limit_key_falls_back_to_client_address():
    assert rate_limit_key(_request({})) == "ip:203.0.113.7"
    assert rate_limit_key(_request({"Authorization": "Bearer junk"})) == "ip:203.0.113.7"
