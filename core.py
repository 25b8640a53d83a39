from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).parent / ".env"

DEFAULT_SERVER_URL = "http://127.0.0.1:8000"
TOKEN_PATH = "/api/token/"
REFRESH_TOKEN_PATH = "/api/token/refresh/"


class Settings(BaseSettings):
    api_url: str = DEFAULT_SERVER_URL
    token_path: str = TOKEN_PATH
    refresh_path: str = REFRESH_TOKEN_PATH
    token_file: str | None = None      # None keeps tokens in memory only
    refresh_timeout: float | None = None
    request_timeout: float | None = None

    model_config = SettingsConfigDict(
        env_prefix="SQUASHSYNC_",
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
