"""Access/refresh token storage, optionally persisted to a JSON file."""

import json
import logging
import os
from typing import Protocol

log = logging.getLogger(__name__)

ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"

_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN)


class CredentialStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class TokenStore:
    def __init__(self, path: str | os.PathLike | None = None):
        self._path = os.fspath(path) if path is not None else None
        self._values: dict[str, str] = {}
        self._load()

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str):
        self._check_key(key)
        self._values[key] = value
        self._persist()

    def clear(self, key: str):
        self._check_key(key)
        if self._values.pop(key, None) is not None:
            self._persist()
            log.info("Token %s cleared", key)

    @staticmethod
    def _check_key(key: str):
        if key not in _KEYS:
            raise KeyError(f"Unknown credential key: {key!r}")

    def _load(self):
        if self._path is None:
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return
        if not isinstance(data, dict):
            return
        for key in _KEYS:
            value = data.get(key)
            if isinstance(value, str) and value:
                self._values[key] = value

    def _persist(self):
        if self._path is None:
            return
        # Read existing file, merge tokens
        data = {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        if not isinstance(data, dict):
            data = {}

        for key in _KEYS:
            if key in self._values:
                data[key] = self._values[key]
            else:
                data.pop(key, None)

        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        log.debug("Tokens written to %s", self._path)
