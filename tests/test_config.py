from __future__ import annotations

import pytest
from pydantic import ValidationError

from hasclient.config import HasClientSettings, resolve_server_url


def test_defaults():
    settings = HasClientSettings()

    assert settings.server_url == "wss://hive-auth.arcange.eu/"
    assert settings.handshake_timeout_ms == 60_000
    assert settings.timeout_grace_ms == 5_000
    assert settings.sign_timeout_ms is None
    assert settings.secret_length == 32


def test_env_override(monkeypatch):
    monkeypatch.setenv("HAS_SERVER_URL", "wss://has.example.org")
    monkeypatch.setenv("HAS_HANDSHAKE_TIMEOUT_MS", "1000")

    settings = HasClientSettings()

    assert settings.server_url == "wss://has.example.org/"
    assert settings.handshake_timeout_ms == 1000


@pytest.mark.parametrize("alias,url", [("arcange", "wss://hive-auth.arcange.eu/"), ("hiveauth", "wss://has.hiveauth.com/")])
def test_known_server_aliases(alias, url):
    assert resolve_server_url(alias) == url


@pytest.mark.parametrize("url", ["http://has.example.org", "has.example.org", ""])
def test_rejects_non_socket_urls(url):
    with pytest.raises(ValidationError):
        HasClientSettings(server_url=url)


def test_rejects_short_secrets():
    with pytest.raises(ValidationError):
        HasClientSettings(secret_length=8)


def test_app_meta_includes_icon_only_when_set():
    assert HasClientSettings(app_name="demo", app_description="d").app_meta() == {"name": "demo", "description": "d"}
    assert HasClientSettings(app_icon="https://x/logo.png").app_meta()["icon"] == "https://x/logo.png"
