from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from hasclient.config import resolve_server_url
from hasclient.errors import ConfigError, TransportError
from hasclient.protocol.validation import json_dumps_compact, parse_frame

FrameHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class Transport:
    """One persistent websocket to the relay, reopened on demand.

    Frames are decoded and passed to ``on_frame``; their meaning is left to
    the caller. Losing the socket only flips ``connected`` and calls
    ``on_close``.
    """

    def __init__(self, url: str, logger=None):
        self.url = self._validated(url)
        self.logger = logger or structlog.get_logger(__name__)
        self.on_frame: Optional[FrameHandler] = None
        self.on_close: Optional[Callable[[], None]] = None

        self.ws = None
        self._connected = False
        self._rx_task: Optional[asyncio.Task] = None
        self._connect_lock: Optional[asyncio.Lock] = None
        self._closing: set[asyncio.Task] = set()

    @staticmethod
    def _validated(url: str) -> str:
        try:
            return resolve_server_url(url)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @property
    def connected(self) -> bool:
        return self._connected and self.ws is not None

    @property
    def relay_host(self) -> str:
        return self.url.rstrip("/")

    def set_endpoint(self, url: str):
        self.url = self._validated(url)
        self._detach()
        self.logger.info("transport_endpoint_set", url=self.url)

    async def ensure_connected(self):
        if self.connected:
            return
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()
        async with self._connect_lock:
            if self.connected:
                return
            url = self.url
            try:
                ws = await connect(url, open_timeout=None)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                self.logger.warning("transport_connect_failed", url=url, error=str(e))
                raise TransportError(f"Could not connect to {url}: {e}") from e

            if url != self.url:
                # endpoint changed while the handshake was in flight
                await ws.close()
                raise TransportError(f"Endpoint changed while connecting to {url}")

            self.ws = ws
            self._connected = True
            self._rx_task = asyncio.create_task(self._recv_loop(ws))
            self.logger.info("transport_connected", url=url)

    async def _recv_loop(self, ws):
        try:
            async for raw in ws:
                try:
                    frame = parse_frame(raw)
                except ValueError as e:
                    self.logger.warning("malformed_frame", error=str(e))
                    continue
                if self.on_frame is None:
                    continue
                try:
                    await self.on_frame(frame)
                except Exception as e:
                    self.logger.error("frame_handler_error", cmd=frame.get("cmd"), error=str(e))
        except ConnectionClosed as e:
            self.logger.info("transport_closed", code=e.rcvd.code if e.rcvd else None)
        finally:
            if self.ws is ws:
                self.ws = None
                self._connected = False
                if self.on_close:
                    self.on_close()

    async def send(self, frame: Dict[str, Any]):
        ws = self.ws
        if ws is None or not self._connected:
            raise TransportError("not connected")
        try:
            await ws.send(json_dumps_compact(frame))
        except ConnectionClosed as e:
            raise TransportError(f"Socket closed while sending {frame.get('cmd')}") from e

    def _detach(self):
        ws, rx_task = self.ws, self._rx_task
        self.ws = None
        self._connected = False
        self._rx_task = None
        if rx_task:
            rx_task.cancel()
        if ws is not None:
            task = asyncio.get_running_loop().create_task(self._quiet_close(ws))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _quiet_close(self, ws):
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            self.logger.debug("transport_close_error", error=str(e))

    async def close(self):
        ws, rx_task = self.ws, self._rx_task
        self.ws = None
        self._connected = False
        self._rx_task = None
        if rx_task:
            rx_task.cancel()
            try:
                await rx_task
            except asyncio.CancelledError:
                pass
        if ws is not None:
            await self._quiet_close(ws)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
