"""Error taxonomy for the session client and its normalized caller-facing form."""

import json
from typing import Any

NETWORK_ERROR_MESSAGE = "Network Error: Could not connect to server."
SETUP_ERROR_MESSAGE = "Request setup error."


class TransportError(Exception):
    """Base for everything a transport can raise."""

    def __init__(self, message: str, *, request=None):
        super().__init__(message)
        self.request = request


class HTTPStatusError(TransportError):
    """The server replied with a status >= 400."""

    def __init__(self, response, *, request=None):
        method = request.method if request is not None else "?"
        url = request.url if request is not None else "?"
        super().__init__(f"{method} {url} -> {response.status}", request=request)
        self.response = response

    @property
    def status(self) -> int:
        return self.response.status


class NetworkError(TransportError):
    """The request was sent but no response arrived."""


class RequestSetupError(TransportError):
    """The request could not be built or sent."""


class RefreshUnrecoverable(Exception):
    """The access token could not be renewed; the session is over.

    ``cause`` is the failure that made the refresh impossible: the original
    401 when no refresh token was stored, otherwise whatever the refresh
    exchange raised.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ApiError(Exception):
    def __init__(self, message: str, *, data: Any = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.data = data
        self.status = status

    def __repr__(self):
        return f"ApiError({self.message!r}, status={self.status!r})"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ApiError":
        if isinstance(exc, ApiError):
            return exc
        while isinstance(exc, RefreshUnrecoverable) and exc.cause is not None:
            exc = exc.cause

        if isinstance(exc, HTTPStatusError):
            data = exc.response.data
            return cls(_response_message(data, exc.status), data=data, status=exc.status)
        if isinstance(exc, NetworkError):
            return cls(NETWORK_ERROR_MESSAGE)
        return cls(SETUP_ERROR_MESSAGE)


def _response_message(data: Any, status: int) -> str:
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    if isinstance(data, (dict, list)) and data:
        return json.dumps(data, ensure_ascii=False)
    return f"API Error: {status}"
