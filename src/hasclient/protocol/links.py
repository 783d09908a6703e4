"""Approval-request deep links and app callback URIs."""
from __future__ import annotations

import json
from typing import Literal, Optional
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict

from hasclient.crypto.primitives import decode_b64, encode_b64
from hasclient.protocol.constants import LINK_PREFIX
from hasclient.protocol.validation import loads_bounded


class ApprovalRequestLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    correlation_id: str
    username: str
    shared_secret: str
    relay_host: str

    def payload(self) -> dict:
        # key order is part of the encoding
        return {
            "account": self.username,
            "uuid": self.correlation_id,
            "key": self.shared_secret,
            "host": self.relay_host.rstrip("/"),
        }

    def to_uri(self) -> str:
        blob = json.dumps(self.payload(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return LINK_PREFIX + encode_b64(blob)


class CallbackPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    correlation_id: str
    status: Literal["ok", "error"]
    token: Optional[str] = None
    error: Optional[str] = None


def build_approval_link(correlation_id: str, username: str, shared_secret: str, relay_host: str) -> str:
    return ApprovalRequestLink(
        correlation_id=correlation_id,
        username=username,
        shared_secret=shared_secret,
        relay_host=relay_host,
    ).to_uri()


def decode_approval_link(uri: str) -> ApprovalRequestLink:
    if not uri.startswith(LINK_PREFIX):
        raise ValueError("Not a HAS auth_req link")
    try:
        data = loads_bounded(decode_b64(uri[len(LINK_PREFIX):]).decode("utf-8"))
    except ValueError as e:
        raise ValueError(f"Malformed HAS link: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Malformed HAS link: payload is not an object")
    return ApprovalRequestLink(
        correlation_id=data.get("uuid"),
        username=data.get("account"),
        shared_secret=data.get("key"),
        relay_host=data.get("host"),
    )


def _first(params: dict, name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values and values[0] else None


def parse_callback(uri: str) -> Optional[CallbackPayload]:
    """Parse ``<scheme>://hiveauth/callback?uuid=..&status=ok|error``.

    Returns None for anything that is not a recognisable callback.
    """
    if not isinstance(uri, str):
        return None
    try:
        params = parse_qs(urlsplit(uri).query)
    except ValueError:
        return None

    uuid = _first(params, "uuid")
    status = _first(params, "status")
    if not uuid or status not in ("ok", "error"):
        return None
    return CallbackPayload(
        correlation_id=uuid,
        status=status,
        token=_first(params, "token"),
        error=_first(params, "error"),
    )
