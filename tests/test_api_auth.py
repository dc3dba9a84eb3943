"""
tests/test_api_auth.py -- Integration tests for the auth HTTP surface.

These tests exercise the full stack: FastAPI routing -> pydantic body models
-> dependency injection -> AuthService -> stores -> response serialization
and the AuthError exception handler.

Coverage:
  - register: 201, camelCase body, no password field, 409 on duplicate
  - login: 200; wrong password and unknown email give identical 401 bodies
  - refresh: rotation, second use 401 invalid_session, logout then refresh
  - me / protected: Bearer required, refresh token rejected
  - body validation: 400 with the error envelope, passwords capped at 72 bytes
  - Cache-Control: no-store on token responses

Fixtures used (from conftest.py):
  - api_client: module-scoped TestClient on an isolated shared-memory DB
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.factories import unique_email


def _register(client: TestClient, email: str, password: str = "pw123", **extra) -> dict:
    resp = client.post("/api/v1/auth/register", json={"email": email, "password": password, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_user_and_tokens(self, api_client: TestClient) -> None:
        email = unique_email("reg")
        data = _register(api_client, email, name="Reg")
        assert set(data) == {"user", "accessToken", "refreshToken"}
        assert data["user"]["email"] == email
        assert data["user"]["name"] == "Reg"
        assert "createdAt" in data["user"]
        assert "password" not in data["user"]
        assert "hashedPassword" not in data["user"]

    def test_register_twice_conflicts(self, api_client: TestClient) -> None:
        email = unique_email("dup")
        _register(api_client, email)
        resp = api_client.post("/api/v1/auth/register", json={"email": email, "password": "pw123"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_exists"

    def test_register_sets_no_store(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json={"email": unique_email(), "password": "pw123"})
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_invalid_email(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json={"email": "not-an-email", "password": "pw123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_register_missing_password(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json={"email": unique_email()})
        assert resp.status_code == 400

    def test_register_password_over_72_bytes(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json={"email": unique_email(), "password": "\u00e9" * 37})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_success(self, api_client: TestClient) -> None:
        email = unique_email("login")
        registered = _register(api_client, email)
        resp = api_client.post("/api/v1/auth/login", json={"email": email, "password": "pw123"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == registered["user"]["id"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_wrong_password_matches_unknown_email(self, api_client: TestClient) -> None:
        email = unique_email("enum")
        _register(api_client, email)
        wrong = api_client.post("/api/v1/auth/login", json={"email": email, "password": "wrong"})
        ghost = api_client.post("/api/v1/auth/login", json={"email": unique_email("ghost"), "password": "pw123"})
        assert wrong.status_code == ghost.status_code == 401
        assert wrong.json() == ghost.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_login_password_over_72_bytes(self, api_client: TestClient) -> None:
        email = unique_email("long")
        _register(api_client, email, password="x" * 72)
        resp = api_client.post("/api/v1/auth/login", json={"email": email, "password": "x" * 72 + "DIFFERENT"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestRefreshAndLogout:
    def test_refresh_rotates(self, api_client: TestClient) -> None:
        old = _register(api_client, unique_email("rot"))["refreshToken"]
        resp = api_client.post("/api/v1/auth/refresh", json={"refreshToken": old})
        assert resp.status_code == 200
        new = resp.json()["refreshToken"]
        assert new != old

        replay = api_client.post("/api/v1/auth/refresh", json={"refreshToken": old})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "invalid_session"

        again = api_client.post("/api/v1/auth/refresh", json={"refreshToken": new})
        assert again.status_code == 200

    def test_refresh_with_access_token(self, api_client: TestClient) -> None:
        access = _register(api_client, unique_email())["accessToken"]
        resp = api_client.post("/api/v1/auth/refresh", json={"refreshToken": access})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_refresh_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh", json={"refreshToken": "garbage"})
        assert resp.status_code == 401

    def test_refresh_missing_body_field(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh", json={})
        assert resp.status_code == 400

    def test_logout_then_refresh(self, api_client: TestClient) -> None:
        token = _register(api_client, unique_email("out"))["refreshToken"]
        resp = api_client.post("/api/v1/auth/logout", json={"refreshToken": token})
        assert resp.status_code == 200
        assert "message" in resp.json()

        after = api_client.post("/api/v1/auth/refresh", json={"refreshToken": token})
        assert after.status_code == 401
        assert after.json()["error"]["code"] == "invalid_session"

    def test_logout_is_idempotent(self, api_client: TestClient) -> None:
        token = _register(api_client, unique_email())["refreshToken"]
        for _ in range(2):
            assert api_client.post("/api/v1/auth/logout", json={"refreshToken": token}).status_code == 200

    def test_logout_empty_token(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/logout", json={"refreshToken": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestMeAndProtected:
    def test_me_with_bearer(self, api_client: TestClient) -> None:
        email = unique_email("me")
        data = _register(api_client, email, name="Me")
        resp = api_client.get("/api/v1/auth/me", headers=_bearer(data["accessToken"]))
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user == data["user"]
        assert "password" not in user

    def test_me_without_header(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_me_with_non_bearer_scheme(self, api_client: TestClient) -> None:
        token = _register(api_client, unique_email())["accessToken"]
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401

    def test_me_with_refresh_token(self, api_client: TestClient) -> None:
        refresh = _register(api_client, unique_email())["refreshToken"]
        resp = api_client.get("/api/v1/auth/me", headers=_bearer(refresh))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_protected_route(self, api_client: TestClient) -> None:
        data = _register(api_client, unique_email("prot"))
        resp = api_client.get("/api/v1/protected", headers=_bearer(data["accessToken"]))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "This is a protected route"
        assert body["user"]["id"] == data["user"]["id"]

    def test_protected_route_requires_auth(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/protected").status_code == 401


def test_alice_scenario(api_client: TestClient) -> None:
    """register -> login -> refresh -> me, end to end over HTTP."""
    email = unique_email("alice")
    reg = api_client.post("/api/v1/auth/register", json={"email": email, "password": "pw123"})
    assert reg.status_code == 201

    login = api_client.post("/api/v1/auth/login", json={"email": email, "password": "pw123"})
    assert login.status_code == 200
    old_refresh = login.json()["refreshToken"]

    refreshed = api_client.post("/api/v1/auth/refresh", json={"refreshToken": old_refresh})
    assert refreshed.status_code == 200
    pair = refreshed.json()
    assert pair["refreshToken"] != old_refresh
    assert api_client.post("/api/v1/auth/refresh", json={"refreshToken": old_refresh}).status_code == 401

    me = api_client.get("/api/v1/auth/me", headers=_bearer(pair["accessToken"]))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == email
    assert "password" not in me.json()["user"]
