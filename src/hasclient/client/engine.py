from __future__ import annotations
import asyncio
import inspect
import json
import time
from typing import Any, Dict, List, Optional

import structlog

from hasclient.config import HasClientSettings
from hasclient.crypto.cipher import decrypt_json, decrypt_text, encrypt_json
from hasclient.crypto.primitives import generate_shared_secret
from hasclient.errors import (
    ConflictError, ConfigError, DecryptionError, NotAuthenticatedError, ProtocolError,
    RejectedError, RequestCancelledError, RequestTimeoutError, TransportError,
)
from hasclient.protocol import frames
from hasclient.protocol.constants import (
    AUTH_CMDS, SIGN_CMDS, Cmd, DEFAULT_CUSTOM_JSON_ID, DEFAULT_KEY_TYPE,
)
from hasclient.storage.resume import MemoryResumptionStore, ResumptionStore, StoredPendingAuthentication
from hasclient.storage.tokens import MemoryTokenStore, StoredToken, TokenStore

from .state import (
    AuthResult, PendingAuthentication, PendingOperation, PendingSignature, Session,
    SignResult, WaitCallback, WaitInfo, epoch_seconds,
)
from .transport import Transport


class HasClient:
    """Authentication and signing over one relay connection.

    Each machine holds at most one pending record. A record leaves its slot
    in the same step that settles its future, so late or duplicate frames
    find an empty slot and are dropped.
    """

    def __init__(
        self,
        settings: Optional[HasClientSettings] = None,
        transport: Optional[Transport] = None,
        resume_store: Optional[ResumptionStore] = None,
        token_store: Optional[TokenStore] = None,
        logger=None,
    ):
        self.settings = settings or HasClientSettings()
        self.logger = logger or structlog.get_logger(__name__)
        self.transport = transport or Transport(self.settings.server_url, logger=self.logger)
        self.transport.on_frame = self._dispatch
        self.transport.on_close = self._on_transport_closed
        self.resume_store = resume_store or MemoryResumptionStore()
        self.token_store = token_store or MemoryTokenStore()

        self.server_timeout_ms = self.settings.handshake_timeout_ms
        self.session: Optional[Session] = None
        self._pending_auth: Optional[PendingAuthentication] = None
        self._pending_sign: Optional[PendingSignature] = None
        self._last_nonce = 0

    # -- configuration ---------------------------------------------------

    @property
    def server_url(self) -> str:
        return self.transport.url

    def set_server(self, url: str):
        self.transport.set_endpoint(url)

    @property
    def pending_authentication(self) -> Optional[PendingAuthentication]:
        return self._pending_auth

    @property
    def pending_signature(self) -> Optional[PendingSignature]:
        return self._pending_sign

    def is_pending(self) -> bool:
        return self._pending_auth is not None

    def pending_result(self) -> Optional[asyncio.Future]:
        return self._pending_auth.result if self._pending_auth else None

    def _auth_deadline_s(self) -> float:
        return (self.server_timeout_ms + self.settings.timeout_grace_ms) / 1000.0

    def _sign_deadline_s(self) -> float:
        base = self.settings.sign_timeout_ms
        if base is None:
            base = self.server_timeout_ms
        return (base + self.settings.timeout_grace_ms) / 1000.0

    # -- authentication ----------------------------------------------------

    async def begin_authentication(self, username: str, on_waiting: Optional[WaitCallback] = None) -> PendingAuthentication:
        """Send ``auth_req`` and return the pending record.

        ``record.waiting`` resolves with the correlation data once the relay
        answers ``auth_wait``; ``record.result`` resolves with the outcome.
        """
        if not username or not isinstance(username, str):
            raise ValueError("Invalid username")
        if self._pending_auth is not None:
            raise ConflictError("Another authentication is in progress")

        shared_secret = generate_shared_secret(self.settings.secret_length)
        data = encrypt_json({"app": self.settings.app_meta()}, shared_secret)

        record = PendingAuthentication(
            result=asyncio.get_running_loop().create_future(),
            username=username,
            shared_secret=shared_secret,
            on_waiting=on_waiting,
        )
        self._pending_auth = record
        record.timeout_task = asyncio.create_task(self._expire_auth(record, self._auth_deadline_s()))

        request = record.start_request(self._deliver(frames.auth_req(username, data)))
        try:
            await asyncio.wait({request, record.result}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._finish_auth(record, exc=RequestCancelledError("Authentication cancelled"))
            raise
        exc = self._request_failure(record)
        if exc is not None:
            await self._finish_auth(record, exc=exc)
            raise exc

        self.logger.info("auth_requested", account=username)
        return record

    async def authenticate(self, username: str, on_waiting: Optional[WaitCallback] = None) -> AuthResult:
        record = await self.begin_authentication(username, on_waiting)
        try:
            return await asyncio.shield(record.result)
        except asyncio.CancelledError:
            await self._finish_auth(record, exc=RequestCancelledError("Authentication cancelled"))
            raise

    async def cancel_authentication(self) -> bool:
        record = self._pending_auth
        if record is None:
            await self._clear_stored()
            return False
        self.logger.info("auth_cancelled", uuid=record.correlation_id)
        return await self._finish_auth(record, exc=RequestCancelledError("Authentication cancelled"))

    async def _expire_auth(self, record: PendingAuthentication, delay: float):
        await asyncio.sleep(delay)
        record.timeout_task = None
        if self._pending_auth is record:
            self.logger.warning("auth_timed_out", uuid=record.correlation_id, after_s=delay)
            await self._finish_auth(record, exc=RequestTimeoutError("Authentication timed out"))

    async def _finish_auth(self, record: PendingAuthentication, result: Any = None,
                           exc: Optional[Exception] = None, clear_stored: bool = True) -> bool:
        if self._pending_auth is not record:
            return False
        self._pending_auth = None
        self._settle(record, result, exc)
        if clear_stored:
            await self._clear_stored()
        return True

    # -- signing -----------------------------------------------------------

    def _require_session(self) -> Session:
        session = self.session
        if session is None or session.is_expired():
            raise NotAuthenticatedError("Not authenticated")
        return session

    def _next_nonce(self) -> int:
        self._last_nonce = max(int(time.time() * 1000), self._last_nonce + 1)
        return self._last_nonce

    async def begin_signature(self, ops: List[Any], key_type: str = DEFAULT_KEY_TYPE, broadcast: bool = True,
                              on_waiting: Optional[WaitCallback] = None) -> PendingSignature:
        session = self._require_session()
        if self._pending_sign is not None:
            raise ConflictError("Another signature request is in progress")

        nonce = self._next_nonce()
        sign_data = {"key_type": key_type, "ops": ops, "broadcast": broadcast, "nonce": nonce}
        data = encrypt_json(sign_data, session.shared_secret)

        record = PendingSignature(
            result=asyncio.get_running_loop().create_future(),
            username=session.username,
            shared_secret=session.shared_secret,
            on_waiting=on_waiting,
            nonce=nonce,
        )
        self._pending_sign = record
        record.timeout_task = asyncio.create_task(self._expire_sign(record, self._sign_deadline_s()))

        request = record.start_request(self._deliver(frames.sign_req(session.username, data, session.token)))
        try:
            await asyncio.wait({request, record.result}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._finish_sign(record, exc=RequestCancelledError("Signature cancelled"))
            raise
        exc = self._request_failure(record)
        if exc is not None:
            self._finish_sign(record, exc=exc)
            raise exc

        self.logger.info("sign_requested", account=session.username, ops=len(ops), broadcast=broadcast)
        return record

    async def sign_operations(self, ops: List[Any], key_type: str = DEFAULT_KEY_TYPE, broadcast: bool = True,
                              on_waiting: Optional[WaitCallback] = None) -> SignResult:
        record = await self.begin_signature(ops, key_type, broadcast, on_waiting)
        try:
            return await asyncio.shield(record.result)
        except asyncio.CancelledError:
            self._finish_sign(record, exc=RequestCancelledError("Signature cancelled"))
            raise

    async def sign_custom_json(self, message: str, app_id: str = DEFAULT_CUSTOM_JSON_ID, broadcast: bool = True,
                               on_waiting: Optional[WaitCallback] = None) -> SignResult:
        session = self._require_session()
        op = [
            "custom_json",
            {
                "id": app_id,
                "json": json.dumps({"message": message, "ts": int(time.time() * 1000)}),
                "required_auths": [],
                "required_posting_auths": [session.username],
            },
        ]
        return await self.sign_operations([op], key_type="posting", broadcast=broadcast, on_waiting=on_waiting)

    async def cancel_signature(self) -> bool:
        record = self._pending_sign
        if record is None:
            return False
        self.logger.info("sign_cancelled", uuid=record.correlation_id)
        return self._finish_sign(record, exc=RequestCancelledError("Signature cancelled"))

    async def _expire_sign(self, record: PendingSignature, delay: float):
        await asyncio.sleep(delay)
        record.timeout_task = None
        if self._pending_sign is record:
            self.logger.warning("sign_timed_out", uuid=record.correlation_id, after_s=delay)
            self._finish_sign(record, exc=RequestTimeoutError("Signature timed out"))

    def _finish_sign(self, record: PendingSignature, result: Any = None, exc: Optional[Exception] = None) -> bool:
        if self._pending_sign is not record:
            return False
        self._pending_sign = None
        self._settle(record, result, exc)
        return True

    # -- shared helpers ----------------------------------------------------

    async def _deliver(self, frame: Dict[str, Any]):
        await self.transport.ensure_connected()
        await self.transport.send(frame)

    @staticmethod
    def _request_failure(record: PendingOperation) -> Optional[BaseException]:
        """The error that ended the request step, or the outcome if the record settled first."""
        request = record.request_task
        if request.done() and not request.cancelled() and request.exception() is not None:
            return request.exception()
        if record.result.done():
            return record.result.exception()
        return None

    @staticmethod
    def _settle(record: PendingOperation, result: Any = None, exc: Optional[Exception] = None):
        record.cancel_timer()
        record.cancel_request()
        if not record.waiting.done():
            if exc is not None:
                record.waiting.set_exception(exc)
            else:
                record.waiting.set_result(record.wait_info())
        if not record.result.done():
            if exc is not None:
                record.result.set_exception(exc)
            else:
                record.result.set_result(result)

    async def _notify(self, callback: Optional[WaitCallback], info: WaitInfo):
        if callback is None:
            return
        try:
            res = callback(info)
            if inspect.isawaitable(res):
                await res
        except Exception as e:
            self.logger.warning("on_waiting_callback_failed", uuid=info.correlation_id, error=str(e))

    async def _save_stored(self, record: PendingAuthentication):
        try:
            await self.resume_store.save(StoredPendingAuthentication(
                correlation_id=record.correlation_id,
                username=record.username,
                shared_secret=record.shared_secret,
                relay_host=record.relay_host,
                expires_at=record.expires_at,
            ))
        except Exception as e:
            self.logger.warning("resume_store_save_failed", error=str(e))

    async def _load_stored(self) -> Optional[StoredPendingAuthentication]:
        try:
            return await self.resume_store.load()
        except Exception as e:
            self.logger.warning("resume_store_load_failed", error=str(e))
            return None

    async def _clear_stored(self):
        try:
            await self.resume_store.clear()
        except Exception as e:
            self.logger.warning("resume_store_clear_failed", error=str(e))

    # -- frame dispatch ----------------------------------------------------

    async def _dispatch(self, frame: Dict[str, Any]):
        cmd = frame.get("cmd")
        if cmd == Cmd.CONNECTED:
            await self._on_connected(frame)
            return

        if cmd in AUTH_CMDS:
            record = self._pending_auth
        elif cmd in SIGN_CMDS:
            record = self._pending_sign
        else:
            self.logger.debug("frame_dropped", cmd=cmd, reason="unknown_cmd")
            return

        if record is None:
            self.logger.debug("frame_dropped", cmd=cmd, reason="no_pending_request")
            return
        uuid = frame.get("uuid")
        if uuid and record.correlation_id and uuid != record.correlation_id:
            self.logger.debug("frame_dropped", cmd=cmd, uuid=uuid, reason="uuid_mismatch")
            return

        if cmd == Cmd.AUTH_WAIT:
            await self._on_auth_wait(record, frame)
        elif cmd == Cmd.AUTH_ACK:
            await self._on_auth_ack(record, frame)
        elif cmd == Cmd.AUTH_NACK:
            self.logger.info("auth_rejected", uuid=record.correlation_id)
            await self._finish_auth(record, exc=RejectedError("Authentication rejected"))
        elif cmd == Cmd.AUTH_ERR:
            message = self._decrypt_error(frame, record.shared_secret)
            self.logger.warning("auth_error", uuid=record.correlation_id, error=message)
            await self._finish_auth(record, exc=ProtocolError(message or "Authentication error"))
        elif cmd == Cmd.SIGN_WAIT:
            await self._on_sign_wait(record, frame)
        elif cmd == Cmd.SIGN_ACK:
            self.logger.info("sign_approved", uuid=record.correlation_id)
            self._finish_sign(record, result=SignResult(correlation_id=record.correlation_id or uuid))
        elif cmd == Cmd.SIGN_NACK:
            self.logger.info("sign_rejected", uuid=record.correlation_id)
            self._finish_sign(record, exc=RejectedError("Signature rejected"))
        elif cmd == Cmd.SIGN_ERR:
            message = self._decrypt_error(frame, record.shared_secret)
            self.logger.warning("sign_error", uuid=record.correlation_id, error=message)
            self._finish_sign(record, exc=ProtocolError(message or "Signature error"))

    def _on_transport_closed(self):
        # pending requests survive; resume_suspended or the next connected frame re-attaches
        self.logger.info(
            "relay_disconnected",
            pending_auth=self._pending_auth is not None,
            pending_sign=self._pending_sign is not None,
        )

    async def _on_connected(self, frame: Dict[str, Any]):
        timeout = frame.get("timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            self.server_timeout_ms = int(timeout * 1000)
        self.logger.info("relay_connected", timeout_ms=self.server_timeout_ms)

        record = self._pending_auth
        if record is not None and record.correlation_id:
            try:
                await self.transport.send(frames.auth_attach(record.correlation_id))
                self.logger.info("auth_reattached", uuid=record.correlation_id)
            except TransportError as e:
                self.logger.warning("auth_reattach_failed", uuid=record.correlation_id, error=str(e))

    async def _on_auth_wait(self, record: PendingAuthentication, frame: Dict[str, Any]):
        uuid = frame.get("uuid")
        if not isinstance(uuid, str) or not uuid:
            self.logger.warning("frame_dropped", cmd=Cmd.AUTH_WAIT, reason="missing_uuid")
            return
        record.correlation_id = uuid
        expires_at = epoch_seconds(frame.get("expire"))
        if expires_at is not None:
            record.expires_at = expires_at
        record.relay_host = self.transport.relay_host

        await self._save_stored(record)
        if self._pending_auth is not record:
            # settled while the store was being written
            await self._clear_stored()
            return

        info = record.wait_info()
        if not record.waiting.done():
            record.waiting.set_result(info)
        self.logger.info("auth_waiting", uuid=uuid, account=record.username, expires_at=record.expires_at)
        await self._notify(record.on_waiting, info)

    async def _on_auth_ack(self, record: PendingAuthentication, frame: Dict[str, Any]):
        try:
            data = decrypt_json(frame.get("data"), record.shared_secret)
        except DecryptionError as e:
            self.logger.warning("auth_ack_undecryptable", uuid=record.correlation_id, error=str(e))
            await self._finish_auth(record, exc=ProtocolError("Failed to decrypt auth_ack"))
            return

        if self._pending_auth is not record:
            return
        # claimed before the token write; cancel and timeout now see an idle slot
        self._pending_auth = None
        record.cancel_timer()

        token = data.get("token") if isinstance(data.get("token"), str) else None
        expire = epoch_seconds(data.get("expire"))
        self.session = Session(
            username=record.username,
            shared_secret=record.shared_secret,
            token=token,
            expires_at=expire,
        )
        result = AuthResult(
            correlation_id=record.correlation_id or frame.get("uuid"),
            shared_secret=record.shared_secret,
            token=token,
            expire=expire,
        )
        self.logger.info("auth_approved", uuid=result.correlation_id, account=record.username)
        if token:
            await self._store_token(token, record.username)
        self._settle(record, result=result)
        await self._clear_stored()

    async def _on_sign_wait(self, record: PendingSignature, frame: Dict[str, Any]):
        uuid = frame.get("uuid")
        if not isinstance(uuid, str) or not uuid:
            self.logger.warning("frame_dropped", cmd=Cmd.SIGN_WAIT, reason="missing_uuid")
            return
        record.correlation_id = uuid
        record.relay_host = self.transport.relay_host
        expires_at = epoch_seconds(frame.get("expire"))
        if expires_at is not None:
            record.expires_at = expires_at

        info = record.wait_info()
        if not record.waiting.done():
            record.waiting.set_result(info)
        self.logger.info("sign_waiting", uuid=uuid, account=record.username)
        await self._notify(record.on_waiting, info)

    def _decrypt_error(self, frame: Dict[str, Any], secret: str) -> str:
        try:
            return decrypt_text(frame.get("error"), secret)
        except DecryptionError as e:
            self.logger.debug("error_payload_undecryptable", cmd=frame.get("cmd"), error=str(e))
            return ""

    # -- session and tokens ------------------------------------------------

    async def _store_token(self, token: str, username: str):
        try:
            await self.token_store.set_token(token, username)
        except Exception as e:
            self.logger.warning("token_store_failed", error=str(e))

    async def stored_token(self) -> Optional[StoredToken]:
        try:
            return await self.token_store.get_token()
        except Exception as e:
            self.logger.warning("token_store_read_failed", error=str(e))
            return None

    async def is_authenticated(self) -> bool:
        if self.session is not None and not self.session.is_expired():
            return True
        return await self.stored_token() is not None

    def invalidate_session(self):
        self.session = None

    async def logout(self):
        await self.cancel_signature()
        await self.cancel_authentication()
        self.session = None
        try:
            await self.token_store.clear_token()
        except Exception as e:
            self.logger.warning("token_store_clear_failed", error=str(e))
        self.logger.info("logged_out")

    # -- lifecycle ---------------------------------------------------------

    async def suspend(self):
        """Drop the socket but keep pending requests for ``resume_suspended``."""
        self.logger.info(
            "client_suspended",
            pending_auth=self._pending_auth is not None,
            pending_sign=self._pending_sign is not None,
        )
        await self.transport.close()

    async def resume_suspended(self, on_waiting: Optional[WaitCallback] = None) -> bool:
        """Re-attach to a pending authentication after the process was suspended.

        With no record in memory, the stored one is restored; its result
        future is available through ``pending_result()``. Returns False when
        there is nothing to resume or the relay cannot be reached.
        """
        record = self._pending_auth
        if record is not None and on_waiting is not None:
            record.on_waiting = on_waiting

        if record is None:
            stored = await self._load_stored()
            if stored is None:
                return False
            if stored.is_expired():
                self.logger.info("stored_auth_expired", uuid=stored.correlation_id)
                await self._clear_stored()
                return False
            if stored.relay_host and stored.relay_host != self.transport.relay_host:
                try:
                    self.transport.set_endpoint(stored.relay_host)
                except ConfigError as e:
                    self.logger.warning("stored_auth_bad_host", host=stored.relay_host, error=str(e))
                    await self._clear_stored()
                    return False
            record = self._restore(stored, on_waiting)

        if not record.correlation_id:
            return False

        try:
            await self.transport.ensure_connected()
        except TransportError as e:
            self.logger.warning("resume_connect_failed", error=str(e))
            return False
        if self._pending_auth is not record:
            return False
        try:
            await self.transport.send(frames.auth_attach(record.correlation_id))
        except TransportError as e:
            self.logger.warning("auth_reattach_failed", uuid=record.correlation_id, error=str(e))
            return False

        if not record.relay_host:
            record.relay_host = self.transport.relay_host
        self.logger.info("auth_resumed", uuid=record.correlation_id, account=record.username)
        await self._notify(record.on_waiting, record.wait_info())
        return True

    def _restore(self, stored: StoredPendingAuthentication, on_waiting: Optional[WaitCallback]) -> PendingAuthentication:
        record = PendingAuthentication(
            result=asyncio.get_running_loop().create_future(),
            username=stored.username,
            shared_secret=stored.shared_secret,
            correlation_id=stored.correlation_id,
            relay_host=stored.relay_host,
            expires_at=stored.expires_at,
            on_waiting=on_waiting,
        )
        record.waiting.set_result(record.wait_info())
        self._pending_auth = record

        if record.expires_at is not None:
            delay = max(0.0, record.expires_at - time.time()) + self.settings.timeout_grace_ms / 1000.0
        else:
            delay = self._auth_deadline_s()
        record.timeout_task = asyncio.create_task(self._expire_auth(record, delay))
        self.logger.info("stored_auth_restored", uuid=record.correlation_id, account=record.username)
        return record

    async def close(self):
        """Tear down: settle in-memory requests as cancelled and close the socket.

        The stored pending authentication is kept so another process can resume it.
        """
        if self._pending_sign is not None:
            self._finish_sign(self._pending_sign, exc=RequestCancelledError("Client closed"))
        if self._pending_auth is not None:
            await self._finish_auth(self._pending_auth, exc=RequestCancelledError("Client closed"), clear_stored=False)
        await self.transport.close()
