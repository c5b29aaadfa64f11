from __future__ import annotations

from typing import Any, Optional

import httpx

from tokengate.client.coordinator import CoordinatorState, RefreshCoordinator, is_refreshable
from tokengate.client.errors import UnauthenticatedError
from tokengate.client.state import AuthState, AuthStateCell
from tokengate.config import get_settings
from tokengate.logging import get_logger

logger = get_logger(__name__)


def _error_fields(response: httpx.Response) -> tuple[str, Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "request failed", None
    if not isinstance(body, dict):
        return response.reason_phrase or "request failed", None
    return body.get("message") or "request failed", body.get("code")


class AuthClient:
    """HTTP client for a tokengate server.

    Keeps the access token in memory and the renewal token in the cookie
    jar of the underlying ``httpx.AsyncClient``. Requests that fail with an
    expired access token are refreshed through a :class:`RefreshCoordinator`
    and replayed exactly once.

    Example::

        async with AuthClient("http://localhost:4000") as client:
            await client.login("user", "password")
            response = await client.get("/api/protected")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        state: Optional[AuthStateCell] = None,
    ) -> None:
        self.base_url = base_url or get_settings().api_base_url
        self._http = httpx.AsyncClient(
            base_url=self.base_url, transport=transport, timeout=timeout
        )
        self.state = state or AuthStateCell()
        self.coordinator = RefreshCoordinator(self.state, self._call_refresh)

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.coordinator.abort("Client closed")
        await self._http.aclose()

    @property
    def access_token(self) -> Optional[str]:
        return self.state.current().access_token

    async def login(self, username: str, password: str) -> AuthState:
        """Open a session; the renewal cookie lands in the cookie jar.

        Raises:
            UnauthenticatedError: The server rejected the credentials.
            httpx.HTTPStatusError: Any other non-success response.
        """
        if self.coordinator.state is CoordinatorState.REFRESHING:
            self.coordinator.abort("Superseded by login")
        response = await self._http.post(
            "/auth/login", json={"username": username, "password": password}
        )
        if response.status_code == 401:
            message, code = _error_fields(response)
            logger.info("client_login_rejected", username=username, code=code)
            raise UnauthenticatedError(message, status_code=401, code=code)
        response.raise_for_status()
        state = self.state.set(response.json()["accessToken"], username)
        logger.info("client_login_succeeded", username=username)
        return state

    async def logout(self) -> None:
        """End the session locally and on the server. Never raises."""
        self.coordinator.abort()
        try:
            response = await self._http.post("/auth/logout")
            if response.is_error:
                logger.warning("client_logout_rejected", status_code=response.status_code)
        except httpx.HTTPError as exc:
            logger.warning(
                "client_logout_failed", error_type=type(exc).__name__, error=str(exc)
            )
        finally:
            self._http.cookies.clear()
            self.state.clear()

    async def refresh(self) -> str:
        """Renew the access token now, joining any refresh already running."""
        return await self.coordinator.await_refresh(self.access_token)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with the bearer credential attached.

        An expired-credential response triggers one refresh and one replay;
        whatever the replay returns is handed back unchanged.

        Raises:
            UnauthenticatedError: The refresh failed or was aborted.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        sent_with = self.access_token
        response = await self._send(method, url, sent_with, headers, kwargs)
        if not is_refreshable(response):
            return response
        fresh = await self.coordinator.await_refresh(sent_with)
        logger.debug("client_request_replayed", method=method, url=url)
        return await self._send(method, url, fresh, headers, kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def _send(
        self,
        method: str,
        url: str,
        bearer: Optional[str],
        headers: dict,
        kwargs: dict,
    ) -> httpx.Response:
        outgoing = dict(headers)
        if bearer:
            outgoing["Authorization"] = f"Bearer {bearer}"
        return await self._http.request(method, url, headers=outgoing, **kwargs)

    async def _call_refresh(self) -> str:
        response = await self._http.post("/auth/refresh")
        if response.status_code != 200:
            message, code = _error_fields(response)
            raise UnauthenticatedError(
                message, status_code=response.status_code, code=code
            )
        return response.json()["accessToken"]
