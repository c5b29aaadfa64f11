"""HTTP-level tests for the auth endpoints and the protected resource."""

import pytest
from fastapi.testclient import TestClient

from tokengate.app import create_app
from tokengate.service.runtime import Runtime


def _login(client, username="user", password="password"):
    return client.post("/auth/login", json={"username": username, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_returns_access_token_and_cookie(self, client):
        resp = _login(client)

        assert resp.status_code == 200
        assert set(resp.json()) == {"accessToken"}
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith("refreshToken=")
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "samesite=strict" in lowered
        assert "max-age=604800" in lowered
        assert "path=/auth" in lowered
        assert "secure" not in lowered
        assert client.cookies.get("refreshToken")

    def test_refresh_token_never_in_body(self, client):
        resp = _login(client)

        assert resp.cookies.get("refreshToken") not in resp.text

    def test_wrong_password(self, client, runtime):
        """401 with the generic message, no cookie and no session."""
        resp = _login(client, password="wrong")

        assert resp.status_code == 401
        assert resp.json() == {"message": "Invalid credentials", "code": "invalid_credentials"}
        assert "set-cookie" not in resp.headers
        assert runtime.store.list_sessions() == []

    def test_unknown_user_matches_wrong_password(self, client):
        resp = _login(client, username="nobody")

        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid credentials"

    def test_malformed_body(self, client):
        resp = client.post("/auth/login", json={"username": "user"})

        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "validation_error"
        assert body["message"] == "Invalid input"
        assert isinstance(body["details"], list)

    def test_secure_cookie_when_configured(self, settings, clock):
        secure = settings.model_copy(update={"cookie_secure": True})
        app = create_app(Runtime.from_settings(secure, clock=clock))

        with TestClient(app, base_url="https://testserver") as https_client:
            resp = _login(https_client)

        assert "secure" in resp.headers["set-cookie"].lower()


class TestRefresh:
    """Tests for POST /auth/refresh."""

    def test_refresh_with_cookie(self, client, clock):
        first = _login(client).json()["accessToken"]
        clock.advance(minutes=1)

        resp = client.post("/auth/refresh")

        assert resp.status_code == 200
        assert resp.json()["accessToken"] != first

    def test_refresh_without_cookie(self, client):
        resp = client.post("/auth/refresh")

        assert resp.status_code == 401
        assert resp.json() == {
            "message": "Refresh token not found",
            "code": "refresh_token_missing",
        }

    def test_refresh_with_invalid_cookie(self, client):
        client.cookies.set("refreshToken", "not-a-token")

        resp = client.post("/auth/refresh")

        assert resp.status_code == 403
        assert resp.json() == {
            "message": "Invalid refresh token",
            "code": "invalid_refresh_token",
        }

    def test_refresh_with_expired_cookie(self, client, clock):
        _login(client)
        clock.advance(days=7, seconds=1)

        resp = client.post("/auth/refresh")

        assert resp.status_code == 403
        assert resp.json()["message"] == "Invalid refresh token"

    def test_no_rotated_cookie_by_default(self, client):
        _login(client)

        resp = client.post("/auth/refresh")

        assert "set-cookie" not in resp.headers


class TestRotationOverHttp:
    """With rotation enabled every refresh sets a new cookie."""

    @pytest.fixture
    def rotating_client(self, rotating_settings, clock):
        app = create_app(Runtime.from_settings(rotating_settings, clock=clock))
        with TestClient(app) as test_client:
            yield test_client

    def test_refresh_sets_new_cookie(self, rotating_client):
        _login(rotating_client)
        original = rotating_client.cookies.get("refreshToken")

        resp = rotating_client.post("/auth/refresh")

        assert resp.status_code == 200
        assert "max-age=604800" in resp.headers["set-cookie"].lower()
        assert rotating_client.cookies.get("refreshToken") != original

    def test_replayed_cookie_revokes_session(self, rotating_client):
        _login(rotating_client)
        original = rotating_client.cookies.get("refreshToken")
        rotating_client.post("/auth/refresh")

        with TestClient(rotating_client.app) as thief:
            thief.cookies.set("refreshToken", original)
            stolen = thief.post("/auth/refresh")

        assert stolen.status_code == 403
        assert stolen.json() == {"message": "Invalid refresh token", "code": "session_revoked"}
        assert rotating_client.post("/auth/refresh").status_code == 403


class TestLogout:
    """Tests for POST /auth/logout."""

    def test_logout_clears_cookie(self, client):
        _login(client)

        resp = client.post("/auth/logout")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out"}
        cookie = resp.headers["set-cookie"].lower()
        assert cookie.startswith("refreshtoken=")
        assert "max-age=0" in cookie
        assert "path=/auth" in cookie
        assert "httponly" in cookie
        assert "samesite=strict" in cookie
        assert client.cookies.get("refreshToken") is None

    def test_logout_revokes_session(self, client, runtime):
        _login(client)
        cookie = client.cookies.get("refreshToken")

        client.post("/auth/logout")
        client.cookies.set("refreshToken", cookie)
        resp = client.post("/auth/refresh")

        assert resp.status_code == 403
        assert resp.json() == {"message": "Invalid refresh token", "code": "session_revoked"}
        assert all(s.revoked for s in runtime.store.list_sessions())

    def test_logout_without_cookie(self, client):
        resp = client.post("/auth/logout")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out"}

    def test_logout_twice(self, client):
        _login(client)

        assert client.post("/auth/logout").status_code == 200
        assert client.post("/auth/logout").status_code == 200


class TestProtected:
    """Tests for GET /api/protected."""

    def test_with_valid_token(self, client):
        token = _login(client).json()["accessToken"]

        resp = client.get("/api/protected", headers=_bearer(token))

        assert resp.status_code == 200
        assert resp.json() == {
            "message": "This is protected data!",
            "user": {"id": "1", "username": "user", "displayName": "User"},
        }

    def test_without_token(self, client):
        resp = client.get("/api/protected")

        assert resp.status_code == 401
        assert resp.json()["code"] == "token_missing"
        assert resp.headers["www-authenticate"].startswith("Bearer")

    def test_with_garbage_token(self, client):
        resp = client.get("/api/protected", headers=_bearer("garbage"))

        assert resp.status_code == 401
        assert resp.json()["code"] == "token_malformed"
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]

    def test_with_renewal_token(self, client):
        _login(client)
        resp = client.get(
            "/api/protected", headers=_bearer(client.cookies.get("refreshToken"))
        )

        assert resp.status_code == 401
        assert resp.json()["code"] == "token_invalid"

    def test_expired_then_refreshed(self, client, clock):
        """The full expiry cycle done by hand."""
        token = _login(client).json()["accessToken"]
        assert client.get("/api/protected", headers=_bearer(token)).status_code == 200

        clock.advance(minutes=15)
        expired = client.get("/api/protected", headers=_bearer(token))
        assert expired.status_code == 401
        assert expired.json() == {"message": "Access token expired", "code": "token_expired"}

        fresh = client.post("/auth/refresh").json()["accessToken"]
        resp = client.get("/api/protected", headers=_bearer(fresh))
        assert resp.status_code == 200
