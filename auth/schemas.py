from pydantic import BaseModel


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access: str
    refresh: str


class RefreshRequest(BaseModel):
    refresh: str


class RefreshResponse(BaseModel):
    access: str
    refresh: str | None = None  # present when the server rotates refresh tokens
