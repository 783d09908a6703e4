from __future__ import annotations

import base64
import json

import pytest

from hasclient.protocol.links import (
    ApprovalRequestLink, CallbackPayload, build_approval_link, decode_approval_link, parse_callback,
)


class TestApprovalLink:
    def test_encodes_account_uuid_key_host(self):
        link = build_approval_link("u1", "alice", "secret", "wss://hive-auth.arcange.eu/")

        assert link.startswith("has://auth_req/")
        payload = json.loads(base64.b64decode(link[len("has://auth_req/"):]))
        assert payload == {"account": "alice", "uuid": "u1", "key": "secret", "host": "wss://hive-auth.arcange.eu"}

    def test_encoding_is_byte_stable(self):
        expected = "has://auth_req/" + base64.b64encode(
            b'{"account":"alice","uuid":"u1","key":"k","host":"wss://relay.test"}'
        ).decode()

        assert build_approval_link("u1", "alice", "k", "wss://relay.test") == expected
        assert build_approval_link("u1", "alice", "k", "wss://relay.test/") == expected

    def test_decode_reverses_build(self):
        link = build_approval_link("u1", "alice", "k", "wss://relay.test")

        assert decode_approval_link(link) == ApprovalRequestLink(
            correlation_id="u1", username="alice", shared_secret="k", relay_host="wss://relay.test"
        )

    @pytest.mark.parametrize("uri", ["https://example.com", "has://auth_req/%%%", "has://auth_req/" + base64.b64encode(b"[]").decode()])
    def test_decode_rejects_foreign_links(self, uri):
        with pytest.raises(ValueError):
            decode_approval_link(uri)


class TestParseCallback:
    def test_ok_with_token(self):
        payload = parse_callback("myapp://hiveauth/callback?uuid=u1&status=ok&token=tok123")

        assert payload == CallbackPayload(correlation_id="u1", status="ok", token="tok123")

    def test_error_with_message(self):
        payload = parse_callback("myapp://hiveauth/callback?uuid=u1&status=error&error=user%20cancelled")

        assert payload.status == "error"
        assert payload.error == "user cancelled"
        assert payload.token is None

    @pytest.mark.parametrize(
        "uri",
        [
            "myapp://hiveauth/callback?status=ok",
            "myapp://hiveauth/callback?uuid=u1",
            "myapp://hiveauth/callback?uuid=&status=ok",
            "myapp://hiveauth/callback?uuid=u1&status=maybe",
            "myapp://hiveauth/callback",
            "not a uri at all",
            "http://[::1",
        ],
    )
    def test_unrecognised_uris_return_none(self, uri):
        assert parse_callback(uri) is None
