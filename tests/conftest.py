"""Shared fixtures: structlog routed through stdlib so caplog works, plus a scripted relay."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest
import pytest_asyncio
import structlog

from hasclient.client.engine import HasClient
from hasclient.config import HasClientSettings, resolve_server_url
from hasclient.errors import TransportError
from hasclient.storage.resume import MemoryResumptionStore
from hasclient.storage.tokens import MemoryTokenStore

def _configure_test_logging():
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


_configure_test_logging()


@pytest.fixture(autouse=True)
def _restore_test_logging():
    # CLI tests call configure_logging(), which binds structlog to the captured
    # stderr of that test; restore the shared config so later tests don't log
    # into a closed stream.
    yield
    _configure_test_logging()


RELAY_URL = "wss://relay.test/"


class FakeTransport:
    """In-memory stand-in for the relay socket; tests push server frames with ``deliver``."""

    def __init__(self, url: str = RELAY_URL):
        self.url = resolve_server_url(url)
        self.on_frame = None
        self.on_close = None
        self.sent: List[Dict[str, Any]] = []
        self.connected = False
        self.connects = 0
        self.fail_connect = False
        self.stall_connect = False

    @property
    def relay_host(self) -> str:
        return self.url.rstrip("/")

    def set_endpoint(self, url: str):
        self.url = resolve_server_url(url)
        self.connected = False

    async def ensure_connected(self):
        if self.fail_connect:
            raise TransportError("relay unreachable")
        if self.stall_connect:
            # a relay that accepts TCP but never answers the handshake
            await asyncio.Event().wait()
        if not self.connected:
            self.connects += 1
            self.connected = True

    async def send(self, frame: Dict[str, Any]):
        if not self.connected:
            raise TransportError("not connected")
        self.sent.append(frame)

    async def close(self):
        self.connected = False

    async def deliver(self, frame: Dict[str, Any]):
        await self.on_frame(frame)

    def drop(self):
        self.connected = False
        if self.on_close:
            self.on_close()

    def frames(self, cmd: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f["cmd"] == cmd]


@pytest.fixture
def settings():
    return HasClientSettings(server_url=RELAY_URL, handshake_timeout_ms=60_000, timeout_grace_ms=5_000)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def resume_store():
    return MemoryResumptionStore()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest_asyncio.fixture
async def client(settings, transport, resume_store, token_store):
    c = HasClient(settings=settings, transport=transport, resume_store=resume_store, token_store=token_store)
    yield c
    await c.close()
