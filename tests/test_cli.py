from __future__ import annotations

import json

import pytest

from hasclient import cli


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr("sys.argv", ["hasclient", *argv])
    cli.main()


def test_security_self_check_passes():
    assert cli.security_self_check() is True


def test_check_command(monkeypatch, capsys):
    run_cli(monkeypatch, "check")

    assert "Security self-check passed" in capsys.readouterr().out


def test_gen_secret(monkeypatch, capsys):
    run_cli(monkeypatch, "gen-secret")

    secret = capsys.readouterr().out.strip()
    assert len(secret) == 32
    assert secret.isalnum()


def test_link_command(monkeypatch, capsys):
    run_cli(monkeypatch, "link", "--user", "alice", "--uuid", "u1", "--key", "k", "--host", "wss://relay.test/")

    assert capsys.readouterr().out.strip().startswith("has://auth_req/")


def test_parse_callback_command(monkeypatch, capsys):
    run_cli(monkeypatch, "parse-callback", "myapp://hiveauth/callback?uuid=u1&status=ok&token=t")

    assert json.loads(capsys.readouterr().out) == {"correlation_id": "u1", "status": "ok", "token": "t", "error": None}


def test_parse_callback_rejects_foreign_uri(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "parse-callback", "myapp://somewhere")

    assert exc.value.code == 1


def test_bad_server_is_a_config_error(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "--server", "http://nope", "gen-secret")

    assert exc.value.code == 2


def test_resume_without_pending_exits_nonzero(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("HAS_STATE_DIR", str(tmp_path))

    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "resume")

    assert exc.value.code == 1
    assert "No pending authentication" in capsys.readouterr().out
