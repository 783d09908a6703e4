"""Client configuration via environment variables."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings

from hasclient.protocol.constants import (
    ALLOWED_SCHEMES,
    DEFAULT_APP_DESCRIPTION,
    DEFAULT_APP_NAME,
    DEFAULT_HANDSHAKE_TIMEOUT_MS,
    DEFAULT_HAS_URL,
    KNOWN_SERVERS,
    SECRET_LENGTH,
    TIMEOUT_GRACE_MS,
)


class HasClientSettings(BaseSettings):
    model_config = {"env_prefix": "HAS_"}

    server_url: str = DEFAULT_HAS_URL
    handshake_timeout_ms: int = DEFAULT_HANDSHAKE_TIMEOUT_MS
    timeout_grace_ms: int = TIMEOUT_GRACE_MS
    sign_timeout_ms: Optional[int] = None
    secret_length: int = SECRET_LENGTH
    app_name: str = DEFAULT_APP_NAME
    app_description: str = DEFAULT_APP_DESCRIPTION
    app_icon: Optional[str] = None
    state_dir: str = ".hasclient"
    log_level: str = "INFO"

    @field_validator("server_url", mode="before")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        return resolve_server_url(v)

    @field_validator("handshake_timeout_ms", "timeout_grace_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("timeouts must be >= 0")
        return v

    @field_validator("secret_length")
    @classmethod
    def validate_secret_length(cls, v: int) -> int:
        if v < 16:
            raise ValueError("secret_length must be >= 16")
        return v

    def app_meta(self) -> dict:
        meta = {"name": self.app_name, "description": self.app_description}
        if self.app_icon:
            meta["icon"] = self.app_icon
        return meta


def resolve_server_url(value: str) -> str:
    """Map a known relay alias to its URL and check the scheme.

    Raises ValueError for anything that is not a ws:// or wss:// URL.
    """
    url = KNOWN_SERVERS.get(value, value).strip()
    parts = urlsplit(url)
    if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.netloc:
        raise ValueError(f"Invalid HAS server URL: {value!r}")
    return url if url.endswith("/") else url + "/"
