from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Optional, Union

from hasclient.protocol.constants import EPOCH_MS_THRESHOLD


def epoch_seconds(value: Any) -> Optional[float]:
    """Normalise a server timestamp (seconds or milliseconds) to epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if ts <= 0:
        return None
    return ts / 1000.0 if ts >= EPOCH_MS_THRESHOLD else ts


@dataclass(frozen=True)
class WaitInfo:
    correlation_id: Optional[str]
    shared_secret: str
    relay_host: str
    expires_at: Optional[float] = None
    username: str = ""


@dataclass(frozen=True)
class AuthResult:
    correlation_id: Optional[str]
    shared_secret: str
    status: str = "approved"
    token: Optional[str] = None
    expire: Optional[float] = None


@dataclass(frozen=True)
class SignResult:
    correlation_id: Optional[str]
    status: str = "approved"


WaitCallback = Callable[[WaitInfo], Union[None, Awaitable[None]]]


@dataclass
class Session:
    username: str
    shared_secret: str
    token: Optional[str] = None
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


def _retrieve(fut: asyncio.Future) -> None:
    # a resumed request may have no awaiting caller
    if not fut.cancelled():
        fut.exception()


@dataclass
class PendingOperation:
    result: asyncio.Future
    username: str = ""
    shared_secret: str = ""
    correlation_id: Optional[str] = None
    relay_host: Optional[str] = None
    expires_at: Optional[float] = None
    on_waiting: Optional[WaitCallback] = None
    timeout_task: Optional[asyncio.Task] = None
    request_task: Optional[asyncio.Task] = None
    waiting: asyncio.Future = field(default=None)

    def __post_init__(self):
        if self.waiting is None:
            self.waiting = self.result.get_loop().create_future()
        self.result.add_done_callback(_retrieve)
        self.waiting.add_done_callback(_retrieve)

    def wait_info(self) -> WaitInfo:
        return WaitInfo(
            correlation_id=self.correlation_id,
            shared_secret=self.shared_secret,
            relay_host=self.relay_host or "",
            expires_at=self.expires_at,
            username=self.username,
        )

    def cancel_timer(self):
        if self.timeout_task and not self.timeout_task.done():
            self.timeout_task.cancel()
        self.timeout_task = None

    def start_request(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        """Run the connect-and-send step as a task owned by this record."""
        self.request_task = self.result.get_loop().create_task(coro)
        self.request_task.add_done_callback(_retrieve)
        return self.request_task

    def cancel_request(self):
        task = self.request_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()


@dataclass
class PendingAuthentication(PendingOperation):
    pass


@dataclass
class PendingSignature(PendingOperation):
    nonce: int = 0
