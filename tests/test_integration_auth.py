"""Integration tests for the HTTP auth flow.

Covers register, login, access-token rotation through the refresh cookie,
logout, step-up reauthentication and account deletion.
"""

import pytest
from fastapi.testclient import TestClient

from todoauth import app as app_module
from todoauth.api.cookies import REFRESH_COOKIE, SESSION_COOKIE
from todoauth.service.runtime import get_runtime
from todoauth.storage.errors import StoreUnavailable

EMAIL = "ada@example.com"
PASSWORD = "correct-horse-battery"
NAME = "Ada Lovelace"


@pytest.fixture
def client():
    return TestClient(app_module.app)


@pytest.fixture
def registered(client):
    resp = client.post(
        "/v1/auth/register", json={"email": EMAIL, "password": PASSWORD, "name": NAME}
    )
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.fixture
def logged_in(client, registered):
    resp = client.post("/v1/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert resp.status_code == 200
    return resp


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestRegistration:
    def test_register_returns_profile(self, registered):
        assert registered["email"] == EMAIL
        assert registered["name"] == NAME
        assert "Ada%20Lovelace" in registered["photo_url"]

    def test_duplicate_email_conflicts(self, client, registered):
        resp = client.post(
            "/v1/auth/register", json={"email": EMAIL, "password": PASSWORD, "name": NAME}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_invalid_email_is_a_validation_error(self, client):
        resp = client.post(
            "/v1/auth/register",
            json={"email": "not-an-email", "password": PASSWORD, "name": NAME},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_sets_cookies_and_returns_access_token(self, client, logged_in):
        data = logged_in.json()["data"]
        assert data["access_token"]
        assert logged_in.headers["X-New-Access-Token"] == data["access_token"]
        assert client.cookies.get(REFRESH_COOKIE)
        assert client.cookies.get(SESSION_COOKIE)
        refresh_cookie = [
            header
            for header in logged_in.headers.get_list("set-cookie")
            if header.startswith(REFRESH_COOKIE)
        ][0]
        assert "HttpOnly" in refresh_cookie

    def test_wrong_password_is_unauthorized(self, client, registered):
        resp = client.post("/v1/auth/login", json={"email": EMAIL, "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert REFRESH_COOKIE not in resp.cookies

    def test_access_token_reads_profile(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        resp = client.get("/v1/users/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == EMAIL

    def test_missing_bearer_is_unauthorized(self, client):
        resp = client.get("/v1/users/me")
        assert resp.status_code == 401

    def test_sessions_list_marks_current(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        resp = client.get("/v1/users/me/sessions", headers=_bearer(token))
        assert resp.status_code == 200
        items = resp.json()["data"]["items"]
        assert len(items) == 1
        assert items[0]["current"] is True


class TestRefreshAndLogout:
    def test_refresh_rotates_access_token(self, client, logged_in):
        old_token = logged_in.json()["data"]["access_token"]
        resp = client.post("/v1/auth/refresh")
        assert resp.status_code == 200
        new_token = resp.json()["data"]["access_token"]
        assert new_token != old_token
        assert resp.headers["X-New-Access-Token"] == new_token

        assert client.get("/v1/users/me", headers=_bearer(old_token)).status_code == 401
        assert client.get("/v1/users/me", headers=_bearer(new_token)).status_code == 200

    def test_refresh_without_cookie_is_unauthorized(self, client):
        assert client.post("/v1/auth/refresh").status_code == 401

    def test_logout_revokes_family_and_clears_cookies(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        refresh_token = client.cookies.get(REFRESH_COOKIE)

        resp = client.post("/v1/auth/logout")
        assert resp.status_code == 200
        assert client.cookies.get(REFRESH_COOKIE) is None
        assert client.get("/v1/users/me", headers=_bearer(token)).status_code == 401

        # replaying the revoked refresh token fails cleanly
        client.cookies.set(REFRESH_COOKIE, refresh_token)
        replay = client.post("/v1/auth/logout")
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "unauthorized"


class TestReauthAndDeletion:
    def test_delete_requires_reauth_token(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        resp = client.delete("/v1/users/me", headers=_bearer(token))
        assert resp.status_code == 401

    def test_reauth_with_wrong_password_fails(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        resp = client.post(
            "/v1/auth/reauth", json={"password": "wrong-password"}, headers=_bearer(token)
        )
        assert resp.status_code == 401

    def test_reauth_token_is_not_an_access_token(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        reauth = client.post(
            "/v1/auth/reauth", json={"password": PASSWORD}, headers=_bearer(token)
        ).json()["data"]["reauth_token"]
        assert client.get("/v1/users/me", headers=_bearer(reauth)).status_code == 401

    def test_account_deletion_revokes_everything(self, client, logged_in):
        token = logged_in.json()["data"]["access_token"]
        reauth = client.post(
            "/v1/auth/reauth", json={"password": PASSWORD}, headers=_bearer(token)
        )
        assert reauth.status_code == 200
        reauth_token = reauth.json()["data"]["reauth_token"]

        resp = client.delete(
            "/v1/users/me",
            headers={**_bearer(token), "X-Reauth-Token": reauth_token},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"deleted": True}

        assert client.get("/v1/users/me", headers=_bearer(token)).status_code == 401
        login = client.post("/v1/auth/login", json={"email": EMAIL, "password": PASSWORD})
        assert login.status_code == 401
        runtime = get_runtime()
        assert runtime.store.users == {}
        assert runtime.store.sessions == {}


class TestEnvelope:
    def test_registry_outage_returns_generic_server_error(self, client, logged_in, monkeypatch):
        token = logged_in.json()["data"]["access_token"]

        async def down(key):
            raise StoreUnavailable("connection refused", operation="get")

        monkeypatch.setattr(get_runtime().registry, "get", down)
        resp = client.get("/v1/users/me", headers=_bearer(token))
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"]["code"] == "server_error"
        assert body["error"]["message"] == "internal server error"
        assert "connection refused" not in resp.text

    def test_request_id_is_echoed(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
