"""Tests for auth endpoints"""
import pytest
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from devicehub.api.deps import get_optional_auth_context
from devicehub.utils.errors import ConfigurationError


def test_signup(client: TestClient):
    """Test registering a user"""
    response = client.post(
        "/auth/signup",
        json={"name": "Alice", "email": "Alice@Example.COM", "password": "secret123"},
    )
    assert response.status_code == 201

    data = response.json()
    assert data["success"] is True
    assert data["user"]["email"] == "alice@example.com"
    assert data["user"]["role"] == "user"
    assert "password" not in data["user"]
    assert "password_hash" not in data["user"]


def test_signup_duplicate_email(client: TestClient):
    payload = {"name": "Alice", "email": "alice@example.com", "password": "secret123"}
    client.post("/auth/signup", json=payload)

    response = client.post("/auth/signup", json={**payload, "email": "ALICE@example.com"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Email already exists"}


def test_signup_validation(client: TestClient):
    response = client.post("/auth/signup", json={"name": "A", "email": "nope", "password": "1"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_login_sets_refresh_cookie(client: TestClient):
    client.post("/auth/signup", json={"name": "Alice", "email": "alice@example.com", "password": "secret123"})

    response = client.post("/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    assert response.status_code == 200

    data = response.json()
    assert data["success"] is True
    assert data["accessToken"]
    assert data["user"]["email"] == "alice@example.com"

    cookie = response.headers["set-cookie"]
    assert "refreshToken=" in cookie
    assert "HttpOnly" in cookie
    assert "samesite=strict" in cookie.lower()


def test_login_failures_look_identical(client: TestClient):
    client.post("/auth/signup", json={"name": "Alice", "email": "alice@example.com", "password": "secret123"})

    wrong_password = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    unknown_email = client.post("/auth/login", json={"email": "nobody@example.com", "password": "secret123"})

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {
        "success": False,
        "message": "Invalid email or password",
    }


def test_profile(client: TestClient, auth_headers: dict):
    response = client.get("/auth/profile", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alice@example.com"


def test_profile_requires_token(client: TestClient):
    response = client.get("/auth/profile")
    assert response.status_code == 401
    assert response.json()["message"] == "Unauthorized: No token provided"


def test_profile_rejects_bad_token(client: TestClient):
    response = client.get("/auth/profile", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_refresh_token_rotation(client: TestClient, auth_headers: dict):
    old_refresh = client.cookies.get("refreshToken")
    assert old_refresh

    response = client.post("/auth/refresh-token")
    assert response.status_code == 200
    assert response.json()["accessToken"]

    new_refresh = client.cookies.get("refreshToken")
    assert new_refresh and new_refresh != old_refresh

    # Replaying the rotated token fails
    client.cookies.clear()
    client.cookies.set("refreshToken", old_refresh)
    response = client.post("/auth/refresh-token")
    assert response.status_code == 401
    assert response.json()["message"] == "Refresh token revoked"


def test_refresh_token_missing(client: TestClient):
    client.cookies.clear()
    response = client.post("/auth/refresh-token")
    assert response.status_code == 401
    assert response.json()["message"] == "Refresh token missing"


def test_logout_revokes_tokens(client: TestClient, auth_headers: dict):
    refresh = client.cookies.get("refreshToken")

    response = client.post("/auth/logout", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["success"] is True

    # Access token is blacklisted
    response = client.get("/auth/profile", headers=auth_headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Token revoked"

    # Refresh token is blacklisted
    client.cookies.clear()
    client.cookies.set("refreshToken", refresh)
    response = client.post("/auth/refresh-token")
    assert response.status_code == 401


def test_logout_without_tokens_succeeds(client: TestClient):
    client.cookies.clear()
    response = client.post("/auth/logout")
    assert response.status_code == 200

    client.cookies.set("refreshToken", "garbage")
    response = client.post("/auth/logout")
    assert response.status_code == 200


def test_optional_auth_surfaces_configuration_error(db):
    class UnconfiguredTokens:
        def authenticate(self, db, token):
            raise ConfigurationError("JWT_ACCESS_SECRET is not configured")

    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="token")
    with pytest.raises(ConfigurationError):
        get_optional_auth_context(credentials, db, UnconfiguredTokens())


def test_optional_auth_ignores_bad_token(db, tokens):
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt")
    assert get_optional_auth_context(credentials, db, tokens) is None
