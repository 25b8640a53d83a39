"""Request/response descriptors and the aiohttp transport behind ApiClient."""

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from api_errors import HTTPStatusError, NetworkError, RequestSetupError

log = logging.getLogger(__name__)


@dataclass
class ApiRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    params: dict | None = None
    auth: bool = True
    retried: bool = False

    def with_bearer(self, token: str) -> "ApiRequest":
        headers = dict(self.headers)
        headers["Authorization"] = f"Bearer {token}"
        return dataclasses.replace(self, headers=headers)


@dataclass
class ApiResponse:
    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    async def send(self, request: ApiRequest) -> ApiResponse: ...

    async def close(self) -> None: ...


class AiohttpTransport:
    def __init__(self, timeout: float | None = None):
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, request: ApiRequest) -> ApiResponse:
        await self._ensure_session()
        try:
            async with self._session.request(
                request.method, request.url,
                json=request.json, params=request.params, headers=request.headers,
            ) as resp:
                response = ApiResponse(
                    status=resp.status,
                    data=await _read_body(resp),
                    headers=dict(resp.headers),
                )
        except aiohttp.InvalidURL as e:
            raise RequestSetupError(f"Invalid URL: {e}", request=request) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("API %s %s error: %r", request.method, request.url, e)
            raise NetworkError(str(e) or type(e).__name__, request=request) from e
        except (TypeError, ValueError) as e:
            raise RequestSetupError(str(e), request=request) from e

        if response.status >= 400:
            log.debug("API %s %s → %d", request.method, request.url, response.status)
            raise HTTPStatusError(response, request=request)
        return response


async def _read_body(resp: aiohttp.ClientResponse) -> Any:
    text = await resp.text(errors="replace")
    if not text:
        return None
    if resp.content_type == "application/json":
        try:
            return json.loads(text)
        except ValueError:
            log.warning("Malformed JSON body from %s", resp.url)
    return text
