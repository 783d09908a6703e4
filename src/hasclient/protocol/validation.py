from __future__ import annotations
import json
from typing import Any, Dict
from .constants import MAX_MSG_BYTES, MAX_JSON_DEPTH, MAX_JSON_KEYS

def _limit_keys(obj: Dict[str, Any]) -> Dict[str, Any]:
    if len(obj) > MAX_JSON_KEYS:
        raise ValueError(f"Too many JSON keys: {len(obj)} > {MAX_JSON_KEYS}")
    return obj

def _check_depth(value: Any, limit: int = MAX_JSON_DEPTH):
    stack = [(value, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > limit:
            raise ValueError("JSON nesting too deep")
        if isinstance(node, dict):
            stack.extend((child, depth + 1) for child in node.values())
        elif isinstance(node, list):
            stack.extend((child, depth + 1) for child in node)

def loads_bounded(text: str) -> Any:
    """Decode untrusted JSON, raising ValueError for anything oversized or overly nested."""
    if len(text) > MAX_MSG_BYTES * 2:
        raise ValueError("Message too large")
    try:
        parsed = json.loads(text, object_hook=_limit_keys)
    except RecursionError as e:
        # the C decoder recurses per nesting level
        raise ValueError("JSON nesting too deep") from e
    _check_depth(parsed)
    return parsed

def parse_frame(raw: str | bytes) -> Dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    frame = loads_bounded(raw)
    if not isinstance(frame, dict):
        raise ValueError("Frame is not a JSON object")
    cmd = frame.get("cmd")
    if not isinstance(cmd, str) or not cmd:
        raise ValueError("Frame has no cmd")
    return frame

def json_dumps_compact(o: Any) -> str:
    return json.dumps(o, ensure_ascii=False, separators=(",", ":"))
