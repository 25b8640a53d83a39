"""Central HTTP client for the SquashSync API. JWT auth with single-flight refresh."""

import inspect
import logging

from api_errors import ApiError, TransportError
from auth.authenticator import RequestAuthenticator
from auth.refresh import RefreshCoordinator
from auth.schemas import LoginRequest, RefreshRequest, RefreshResponse, TokenResponse
from auth.token_store import ACCESS_TOKEN, REFRESH_TOKEN, CredentialStore, TokenStore
from core import REFRESH_TOKEN_PATH, TOKEN_PATH, Settings, get_settings
from http_transport import AiohttpTransport, ApiRequest, ApiResponse, Transport

log = logging.getLogger(__name__)

_DEFAULT_HEADERS = {"Content-Type": "application/json"}


class ApiClient:
    def __init__(
        self,
        server_url: str,
        token_store: CredentialStore,
        *,
        transport: Transport | None = None,
        on_logout=None,
        token_path: str = TOKEN_PATH,
        refresh_path: str = REFRESH_TOKEN_PATH,
        refresh_timeout: float | None = None,
    ):
        self._base = server_url.rstrip("/")
        self._tokens = token_store
        self._transport = transport if transport is not None else AiohttpTransport()
        self._token_path = token_path
        self._refresh_path = refresh_path
        self._on_logout = on_logout
        self._headers = dict(_DEFAULT_HEADERS)
        self._authenticate = RequestAuthenticator(token_store)
        self._refresh = RefreshCoordinator(
            token_store,
            self._exchange_refresh_token,
            refresh_path=refresh_path,
            on_logout=self._forced_logout,
            on_token=self._set_default_credential,
            timeout=refresh_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> "ApiClient":
        settings = settings or get_settings()
        kwargs.setdefault("transport", AiohttpTransport(timeout=settings.request_timeout))
        return cls(
            settings.api_url,
            TokenStore(settings.token_file),
            token_path=settings.token_path,
            refresh_path=settings.refresh_path,
            refresh_timeout=settings.refresh_timeout,
            **kwargs,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        await self._transport.close()

    @property
    def is_authenticated(self) -> bool:
        return self._tokens.get(ACCESS_TOKEN) is not None

    @property
    def refreshing(self) -> bool:
        return self._refresh.refreshing

    @property
    def pending_refresh(self) -> int:
        return self._refresh.pending

    @property
    def default_headers(self) -> dict[str, str]:
        return dict(self._headers)

    def _url(self, path: str) -> str:
        return f"{self._base}{path}"

    async def _dispatch(self, request: ApiRequest) -> ApiResponse:
        prepared = self._authenticate(request) if request.auth else request
        try:
            return await self._transport.send(prepared)
        except TransportError as e:
            if not self._refresh.should_refresh(request, e):
                raise
            return await self._refresh.recover(request, e, self._dispatch)

    async def request(
        self, method: str, path: str, *, json=None, params=None, auth=True,
    ) -> ApiResponse:
        headers = dict(self._headers)
        if not auth:
            headers.pop("Authorization", None)
        request = ApiRequest(
            method, self._url(path),
            headers=headers, json=json, params=params, auth=auth,
        )
        try:
            return await self._dispatch(request)
        except Exception as e:
            error = ApiError.from_exception(e)
            log.error("API %s %s failed: %s", method, path, error.message)
            raise error from e

    async def _call(self, method: str, path: str, **kwargs):
        resp = await self.request(method, path, **kwargs)
        return resp.data

    # ── Auth ───────────────────────────────────────────────

    async def _exchange_refresh_token(self, refresh_token: str) -> RefreshResponse:
        # Sent straight to the transport: never authenticated, never intercepted.
        resp = await self._transport.send(ApiRequest(
            "POST", self._url(self._refresh_path),
            headers=dict(_DEFAULT_HEADERS),
            json=RefreshRequest(refresh=refresh_token).model_dump(),
            auth=False,
        ))
        return RefreshResponse.model_validate(resp.data)

    def _set_default_credential(self, access_token: str | None):
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"
        else:
            self._headers.pop("Authorization", None)

    async def _forced_logout(self):
        self._set_default_credential(None)
        if self._on_logout is not None:
            result = self._on_logout()
            if inspect.isawaitable(result):
                await result

    async def login_user(self, username: str, password: str) -> dict:
        data = await self._call(
            "POST", self._token_path,
            json=LoginRequest(username=username, password=password).model_dump(),
            auth=False,
        )
        try:
            tokens = TokenResponse.model_validate(data)
        except ValueError as e:
            raise ApiError("Malformed token response", data=data) from e
        self._tokens.set(ACCESS_TOKEN, tokens.access)
        self._tokens.set(REFRESH_TOKEN, tokens.refresh)
        self._set_default_credential(tokens.access)
        return data

    def logout(self):
        self._tokens.clear(ACCESS_TOKEN)
        self._tokens.clear(REFRESH_TOKEN)
        self._set_default_credential(None)
        log.info("Logged out")

    # ── Routines ───────────────────────────────────────────

    async def get_assigned_routines(self) -> list:
        return await self._call("GET", "/api/solo/assigned-routines/")

    async def get_routine_details(self, routine_id) -> dict:
        return await self._call("GET", f"/api/solo/assigned-routines/{routine_id}/")

    # ── Session logs ───────────────────────────────────────

    async def log_session(self, session_data: dict) -> dict:
        return await self._call("POST", "/api/solo/session-logs/", json=session_data)

    async def get_logged_sessions(self) -> list:
        log.debug("Fetching logged sessions")
        return await self._call("GET", "/api/solo/session-logs/")
