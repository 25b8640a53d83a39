"""Single-flight access token refresh for requests rejected with 401.

However many requests fail with an expired token at the same time, only the
first one runs the refresh exchange. The rest park on a future and are
replayed with the new token, or rejected with the refresh error, when that
exchange concludes. Everything here runs on one event loop: the state check
and the switch to ``Refreshing`` in ``recover`` have no ``await`` between
them, so no lock is needed.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from api_errors import HTTPStatusError, NetworkError, RefreshUnrecoverable
from auth.schemas import RefreshResponse
from auth.token_store import ACCESS_TOKEN, REFRESH_TOKEN, CredentialStore
from http_transport import ApiRequest, ApiResponse

log = logging.getLogger(__name__)

Exchange = Callable[[str], Awaitable[RefreshResponse]]
Replay = Callable[[ApiRequest], Awaitable[ApiResponse]]


@dataclass(frozen=True)
class Idle:
    pass


@dataclass
class Refreshing:
    waiters: list[asyncio.Future] = field(default_factory=list)


IDLE = Idle()


class RefreshCoordinator:
    def __init__(
        self,
        store: CredentialStore,
        exchange: Exchange,
        *,
        refresh_path: str,
        on_logout: Callable[[], object] | None = None,
        on_token: Callable[[str], None] | None = None,
        timeout: float | None = None,
    ):
        self._store = store
        self._exchange = exchange
        self._refresh_path = refresh_path
        self._on_logout = on_logout
        self._on_token = on_token
        self._timeout = timeout
        self._state: Idle | Refreshing = IDLE

    @property
    def state(self) -> Idle | Refreshing:
        return self._state

    @property
    def refreshing(self) -> bool:
        return isinstance(self._state, Refreshing)

    @property
    def pending(self) -> int:
        if isinstance(self._state, Refreshing):
            return len(self._state.waiters)
        return 0

    def is_refresh_request(self, request: ApiRequest) -> bool:
        return request.url.split("?", 1)[0].endswith(self._refresh_path)

    def should_refresh(self, request: ApiRequest, error: BaseException) -> bool:
        return (
            isinstance(error, HTTPStatusError)
            and error.status == 401
            and request.auth
            and not request.retried
            and not self.is_refresh_request(request)
        )

    async def recover(
        self, request: ApiRequest, error: HTTPStatusError, replay: Replay,
    ) -> ApiResponse:
        """Renew the access token and replay ``request`` with it.

        Raises RefreshUnrecoverable when the token cannot be renewed.
        """
        request.retried = True
        state = self._state

        if isinstance(state, Refreshing):
            waiter = asyncio.get_running_loop().create_future()
            state.waiters.append(waiter)
            log.debug("Refresh in progress, queued %s %s (%d waiting)",
                      request.method, request.url, len(state.waiters))
            token = await waiter
            log.debug("Retrying queued %s %s with new token", request.method, request.url)
            return await replay(request.with_bearer(token))

        state = Refreshing()
        self._state = state
        log.info("Access token rejected on %s %s, refreshing", request.method, request.url)

        try:
            token = await self._refresh(error)
        except RefreshUnrecoverable as e:
            self._drain(state, error=e)
            await self._force_logout()
            raise
        except BaseException as e:
            # Cancelled mid-exchange: the refresh token is not known to be bad.
            self._drain(state, error=RefreshUnrecoverable("Token refresh interrupted", cause=e))
            raise

        self._drain(state, token=token)
        log.debug("Retrying original %s %s", request.method, request.url)
        return await replay(request.with_bearer(token))

    async def _refresh(self, auth_error: HTTPStatusError) -> str:
        refresh_token = self._store.get(REFRESH_TOKEN)
        if not refresh_token:
            log.warning("No refresh token found, forcing logout")
            raise RefreshUnrecoverable("No refresh token available", cause=auth_error)

        try:
            if self._timeout is not None:
                result = await asyncio.wait_for(self._exchange(refresh_token), self._timeout)
            else:
                result = await self._exchange(refresh_token)
            self._store.set(ACCESS_TOKEN, result.access)
            if result.refresh:
                self._store.set(REFRESH_TOKEN, result.refresh)
            if self._on_token is not None:
                self._on_token(result.access)
        except RefreshUnrecoverable:
            raise
        except asyncio.TimeoutError as e:
            log.error("Token refresh timed out after %ss", self._timeout)
            timeout = NetworkError(f"Token refresh timed out after {self._timeout}s")
            raise RefreshUnrecoverable("Token refresh timed out", cause=timeout) from e
        except Exception as e:
            log.error("Token refresh failed: %r", e)
            raise RefreshUnrecoverable("Token refresh failed", cause=e) from e

        log.info("Token refresh successful")
        return result.access

    def _drain(self, state: Refreshing, *, token: str | None = None,
               error: BaseException | None = None):
        if self._state is state:
            self._state = IDLE
        waiters, state.waiters = state.waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)

    async def _force_logout(self):
        self._store.clear(ACCESS_TOKEN)
        self._store.clear(REFRESH_TOKEN)
        if self._on_logout is None:
            return
        try:
            result = self._on_logout()
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Logout callback failed")
