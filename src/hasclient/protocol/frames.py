"""Builders for the frames this client sends to the relay."""
from __future__ import annotations
from typing import Any, Dict, Optional
from .constants import Cmd

def auth_req(account: str, data: str) -> Dict[str, Any]:
    return {"cmd": Cmd.AUTH_REQ, "account": account, "data": data}

def auth_attach(correlation_id: str) -> Dict[str, Any]:
    return {"cmd": Cmd.AUTH_ATTACH, "uuid": correlation_id}

def sign_req(account: str, data: str, token: Optional[str] = None) -> Dict[str, Any]:
    frame = {"cmd": Cmd.SIGN_REQ, "account": account, "data": data}
    if token:
        frame["token"] = token
    return frame
