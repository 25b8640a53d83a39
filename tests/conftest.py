import pytest

from auth.token_store import TokenStore
from core import get_settings


@pytest.fixture
def store():
    s = TokenStore()
    s.set("access_token", "T1")
    s.set("refresh_token", "R1")
    return s


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    for key in ("API_URL", "TOKEN_FILE", "REFRESH_TIMEOUT", "REQUEST_TIMEOUT"):
        monkeypatch.delenv(f"SQUASHSYNC_{key}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
