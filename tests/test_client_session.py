"""End-to-end tests of AuthClient against an in-process server.

Requests go through ``httpx.ASGITransport`` so the real routes, cookies and
error bodies are exercised; the server clock is the shared fake clock.
"""

import asyncio
import dataclasses

import httpx
import pytest

from tokengate.client.coordinator import CoordinatorState
from tokengate.client.errors import UnauthenticatedError
from tokengate.client.session import AuthClient


def _client(app):
    return AuthClient("http://testserver", transport=httpx.ASGITransport(app=app))


def _count_refreshes(monkeypatch, runtime):
    calls = []
    original = runtime.auth.refresh

    def counting(refresh_token):
        calls.append(refresh_token)
        return original(refresh_token)

    monkeypatch.setattr(runtime.auth, "refresh", counting)
    return calls


class TestLogin:
    async def test_login_sets_state_and_cookie(self, app):
        async with _client(app) as client:
            state = await client.login("user", "password")

            assert state.authenticated
            assert state.principal == "user"
            assert client.access_token == state.access_token
            assert client._http.cookies.get("refreshToken")

    async def test_wrong_password(self, app, runtime):
        async with _client(app) as client:
            with pytest.raises(UnauthenticatedError) as excinfo:
                await client.login("user", "wrong")

            assert excinfo.value.message == "Invalid credentials"
            assert excinfo.value.code == "invalid_credentials"
            assert client.access_token is None
            assert runtime.store.list_sessions() == []


class TestRequests:
    async def test_protected_request(self, app):
        async with _client(app) as client:
            await client.login("user", "password")

            resp = await client.get("/api/protected")

            assert resp.status_code == 200
            assert resp.json()["user"]["displayName"] == "User"

    async def test_request_without_login(self, app):
        """A missing token is not refreshable and comes back as-is."""
        async with _client(app) as client:
            resp = await client.get("/api/protected")

            assert resp.status_code == 401
            assert resp.json()["code"] == "token_missing"

    async def test_expired_token_is_refreshed_and_replayed(self, app, runtime, clock, monkeypatch):
        calls = _count_refreshes(monkeypatch, runtime)
        async with _client(app) as client:
            await client.login("user", "password")
            first = client.access_token
            clock.advance(minutes=15)

            resp = await client.get("/api/protected")

            assert resp.status_code == 200
            assert len(calls) == 1
            assert client.access_token != first
            assert client.coordinator.state is CoordinatorState.IDLE

    async def test_concurrent_expiry_single_refresh(self, app, runtime, clock, monkeypatch):
        calls = _count_refreshes(monkeypatch, runtime)
        async with _client(app) as client:
            await client.login("user", "password")
            clock.advance(minutes=16)

            responses = await asyncio.gather(
                *(client.get("/api/protected") for _ in range(5))
            )

            assert [r.status_code for r in responses] == [200] * 5
            assert len(calls) == 1

    async def test_refresh_failure_surfaces_unauthenticated(self, app, clock):
        async with _client(app) as client:
            await client.login("user", "password")
            clock.advance(days=8)

            with pytest.raises(UnauthenticatedError) as excinfo:
                await client.get("/api/protected")

            assert excinfo.value.status_code == 403
            assert client.access_token is None

    async def test_replay_failure_returned_as_is(self, app, runtime, clock, monkeypatch):
        """At most one refresh per request; a second 401 is not retried."""
        async with _client(app) as client:
            await client.login("user", "password")
            expired = client.access_token
            clock.advance(minutes=15)
            calls = []
            original = runtime.auth.refresh

            def refresh_to_expired(refresh_token):
                calls.append(refresh_token)
                return dataclasses.replace(original(refresh_token), access_token=expired)

            monkeypatch.setattr(runtime.auth, "refresh", refresh_to_expired)

            resp = await client.get("/api/protected")

            assert resp.status_code == 401
            assert resp.json()["code"] == "token_expired"
            assert len(calls) == 1

    async def test_manual_refresh(self, app):
        async with _client(app) as client:
            await client.login("user", "password")
            before = client.access_token

            token = await client.refresh()

            assert token == client.access_token
            assert token != before


class TestLogout:
    async def test_logout_clears_state_and_revokes(self, app, runtime):
        async with _client(app) as client:
            await client.login("user", "password")

            await client.logout()

            assert client.access_token is None
            assert client._http.cookies.get("refreshToken") is None
            assert all(s.revoked for s in runtime.store.list_sessions())

    async def test_logout_never_raises(self, app):
        async with _client(app) as client:
            await client.logout()

            assert client.access_token is None

    async def test_logout_during_refresh_fails_waiters(self, app, clock, monkeypatch):
        started = asyncio.Event()
        gate = asyncio.Event()

        async def blocked_refresh():
            started.set()
            await gate.wait()
            return "late-token"

        async with _client(app) as client:
            await client.login("user", "password")
            clock.advance(minutes=15)
            monkeypatch.setattr(client.coordinator, "_refresh_call", blocked_refresh)

            pending = asyncio.ensure_future(client.get("/api/protected"))
            await started.wait()
            await client.logout()
            gate.set()

            with pytest.raises(UnauthenticatedError):
                await pending
            assert client.access_token is None
            assert client.coordinator.state is CoordinatorState.IDLE
