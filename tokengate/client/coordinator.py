"""Single-flight renewal of an expired access credential.

Any number of requests may discover at the same moment that the access
token has expired. The coordinator lets exactly one of them trigger the
renewal call; the rest wait on the same outcome and each replays its own
request once with the fresh credential.
"""
from __future__ import annotations

import asyncio
import enum
from typing import Awaitable, Callable, List, Optional

import httpx

from tokengate.client.errors import UnauthenticatedError
from tokengate.client.state import AuthStateCell
from tokengate.logging import get_logger

logger = get_logger(__name__)

RefreshCall = Callable[[], Awaitable[str]]

# Only this server error code means "renew and retry"; every other 401 is final
REFRESHABLE_CODE = "token_expired"


class CoordinatorState(str, enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


def is_refreshable(response: httpx.Response) -> bool:
    """True when ``response`` reports an expired (not missing or forged) access token."""
    if response.status_code != 401:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("code") == REFRESHABLE_CODE


class RefreshCoordinator:
    """Deduplicates concurrent refreshes for one client.

    ``refresh_call`` performs the renewal round-trip and returns the new
    access token; any exception it raises counts as a failed refresh.
    """

    def __init__(self, state: AuthStateCell, refresh_call: RefreshCall) -> None:
        self._cell = state
        self._refresh_call = refresh_call
        self._state = CoordinatorState.IDLE
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None
        # Bumped on every new refresh and on abort; stale results are dropped
        self._generation = 0

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def await_refresh(self, stale_token: Optional[str]) -> str:
        """Return a fresh access token to replace ``stale_token``.

        If a refresh already completed since ``stale_token`` was sent, the
        current token is returned without another round-trip. Otherwise the
        caller joins the in-flight refresh, starting one if none is running.

        Raises:
            UnauthenticatedError: The refresh failed or was aborted.
        """
        current = self._cell.current().access_token
        if (
            self._state is CoordinatorState.IDLE
            and current is not None
            and current != stale_token
        ):
            return current

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future = loop.create_future()
        self._waiters.append(waiter)
        # No await between the check and the transition
        if self._state is CoordinatorState.IDLE:
            self._state = CoordinatorState.REFRESHING
            self._generation += 1
            self._task = loop.create_task(self._run(self._generation))
            logger.debug("refresh_started", generation=self._generation)
        else:
            logger.debug("refresh_joined", waiters=len(self._waiters))
        return await waiter

    def abort(self, reason: str = "Logged out") -> None:
        """Fail every waiter and drop the in-flight refresh, if any."""
        if self._state is CoordinatorState.IDLE and not self._waiters:
            return
        self._generation += 1
        task = self._task
        self._task = None
        self._state = CoordinatorState.IDLE
        waiters, self._waiters = self._waiters, []
        if task is not None and not task.done():
            task.cancel()
        logger.info("refresh_aborted", waiters=len(waiters))
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(UnauthenticatedError(reason))

    async def _run(self, generation: int) -> None:
        try:
            access_token = await self._refresh_call()
        except asyncio.CancelledError:
            # abort() has already failed the waiters of its generation
            if generation == self._generation:
                self._fail(UnauthenticatedError("Refresh cancelled"))
            raise
        except Exception as exc:
            if generation != self._generation:
                return
            self._fail(exc)
            return
        if generation != self._generation:
            logger.info("refresh_result_discarded", generation=generation)
            return
        self._succeed(access_token)

    def _take_waiters(self) -> List[asyncio.Future]:
        waiters, self._waiters = self._waiters, []
        self._task = None
        self._state = CoordinatorState.IDLE
        return waiters

    def _succeed(self, access_token: str) -> None:
        principal = self._cell.current().principal
        self._cell.set(access_token, principal)
        waiters = self._take_waiters()
        logger.info("refresh_completed", waiters=len(waiters))
        # Futures wake their awaiters in the order results are set
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(access_token)

    def _fail(self, exc: Exception) -> None:
        self._cell.clear()
        waiters = self._take_waiters()
        message = getattr(exc, "message", None) or "Session expired"
        status_code = getattr(exc, "status_code", None)
        code = getattr(exc, "code", None)
        logger.warning(
            "refresh_failed",
            waiters=len(waiters),
            error_type=type(exc).__name__,
            status_code=status_code,
        )
        for waiter in waiters:
            if waiter.done():
                continue
            error = UnauthenticatedError(message, status_code=status_code, code=code)
            error.__cause__ = exc
            waiter.set_exception(error)
