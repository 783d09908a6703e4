from __future__ import annotations

import json

import pytest

from hasclient.crypto.primitives import decode_b64, encode_b64
from hasclient.protocol.validation import loads_bounded, parse_frame


def nested(depth: int) -> str:
    return "[" * depth + "]" * depth


def test_accepts_ordinary_frame():
    assert parse_frame(b'{"cmd":"auth_wait","uuid":"u1"}') == {"cmd": "auth_wait", "uuid": "u1"}


@pytest.mark.parametrize("depth", [12, 50_000])
def test_deep_nesting_is_a_value_error(depth):
    with pytest.raises(ValueError, match="nesting"):
        loads_bounded(nested(depth))


def test_nesting_at_the_limit_is_accepted():
    assert loads_bounded(nested(11)) is not None


def test_too_many_keys():
    with pytest.raises(ValueError, match="keys"):
        loads_bounded(json.dumps({f"k{i}": i for i in range(101)}))


def test_oversized_message():
    with pytest.raises(ValueError, match="too large"):
        loads_bounded(json.dumps({"cmd": "x", "pad": "a" * 200_000}))


@pytest.mark.parametrize("raw", ["[]", '{"cmd": ""}', '{"cmd": 3}', b"\xff\xfe"])
def test_frames_without_cmd_are_rejected(raw):
    with pytest.raises(ValueError):
        parse_frame(raw)


def test_base64_decode_is_strict():
    assert decode_b64(encode_b64(b"\x00salted")) == b"\x00salted"
    for bad in ["abc", "not base64!", "é"]:
        with pytest.raises(ValueError):
            decode_b64(bad)
