from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog
from pydantic import ValidationError

from hasclient.client.engine import HasClient
from hasclient.client.state import WaitInfo
from hasclient.config import HasClientSettings
from hasclient.crypto.cipher import decrypt_json, encrypt_json
from hasclient.crypto.primitives import decode_b64, generate_shared_secret
from hasclient.errors import DecryptionError, HasError
from hasclient.protocol.constants import KNOWN_SERVERS
from hasclient.protocol.links import build_approval_link, parse_callback
from hasclient.storage.resume import FileResumptionStore
from hasclient.storage.tokens import FileTokenStore
from hasclient.util.deps import check_dependencies
from hasclient.util.log import configure_logging

logger = structlog.get_logger(__name__)


def security_self_check():
    checks = []

    try:
        secret = generate_shared_secret()
        checks.append(("Secure random source", len(secret) >= 32 and secret.isalnum()))
    except HasError:
        checks.append(("Secure random source", False))

    key = generate_shared_secret()
    payload = {"app": {"name": "self-check"}}
    try:
        checks.append(("Cipher round trip", decrypt_json(encrypt_json(payload, key), key) == payload))
    except DecryptionError:
        checks.append(("Cipher round trip", False))

    try:
        decrypt_json(encrypt_json(payload, key), generate_shared_secret())
        checks.append(("Cipher rejects wrong secret", False))
    except DecryptionError:
        checks.append(("Cipher rejects wrong secret", True))

    try:
        decode_b64("aW52YWxpZCBwYWRkaW5n")
        checks.append(("Base64 strict decode (valid)", True))
    except ValueError:
        checks.append(("Base64 strict decode (valid)", False))

    try:
        decode_b64("invalid!@#$")
        checks.append(("Base64 strict decode (invalid)", False))
    except ValueError:
        checks.append(("Base64 strict decode (invalid)", True))

    all_ok = all(ok for _, ok in checks)
    for name, ok in checks:
        (logger.info if ok else logger.error)("security_check", check=name, status=("OK" if ok else "FAILED"))

    if not all_ok:
        raise RuntimeError("Security self-check failed")
    logger.info("security_self_check_passed")
    return True


def build_client(settings: HasClientSettings) -> HasClient:
    state_dir = Path(settings.state_dir)
    return HasClient(
        settings=settings,
        resume_store=FileResumptionStore(state_dir / "pending_auth.json"),
        token_store=FileTokenStore(state_dir / "token.json"),
    )


def print_approval_link(info: WaitInfo):
    link = build_approval_link(info.correlation_id, info.username, info.shared_secret, info.relay_host)
    print("Approve the request in your HiveAuth app (scan or open):")
    print(link)


async def run_login(settings: HasClientSettings, username: str, sign_message: str | None) -> int:
    client = build_client(settings)
    try:
        result = await client.authenticate(username, on_waiting=print_approval_link)
        print(f"Authenticated as {username}")
        if result.token:
            print(f"Token: {result.token}")

        if sign_message:
            res = await client.sign_custom_json(
                sign_message,
                on_waiting=lambda info: print(f"Signature pending ({info.correlation_id}), approve it in your app"),
            )
            print(f"Signature {res.status} ({res.correlation_id})")
        return 0
    finally:
        await client.close()


async def run_resume(settings: HasClientSettings) -> int:
    client = build_client(settings)
    try:
        if not await client.resume_suspended(on_waiting=print_approval_link):
            print("No pending authentication to resume")
            return 1
        result = await client.pending_result()
        print(f"Authenticated as {client.session.username}")
        if result.token:
            print(f"Token: {result.token}")
        return 0
    finally:
        await client.close()


def main():
    ok, missing = check_dependencies()
    if not ok:
        print("ERROR: Missing dependencies:")
        for dep in missing:
            print(f"  - {dep}")
        print(f"\nInstall with:\npip install {' '.join(missing)}")
        sys.exit(1)

    parser = argparse.ArgumentParser(description="HiveAuth (HAS) client")
    parser.add_argument("--server", help=f"Relay URL or one of: {', '.join(KNOWN_SERVERS)}")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Authenticate an account through the relay")
    login_parser.add_argument("--user", required=True)
    login_parser.add_argument("--sign-message", help="After login, request a custom_json signature")

    subparsers.add_parser("resume", help="Re-attach to a stored pending authentication")

    link_parser = subparsers.add_parser("link", help="Build an approval deep link")
    link_parser.add_argument("--user", required=True)
    link_parser.add_argument("--uuid", required=True)
    link_parser.add_argument("--key", required=True)
    link_parser.add_argument("--host", required=True)

    cb_parser = subparsers.add_parser("parse-callback", help="Parse an app callback URI")
    cb_parser.add_argument("uri")

    subparsers.add_parser("gen-secret", help="Generate a shared secret")
    subparsers.add_parser("check", help="Run security self-check")

    args = parser.parse_args()

    try:
        settings = HasClientSettings(server_url=args.server) if args.server else HasClientSettings()
    except ValidationError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)
    configure_logging(settings.log_level, json_output=args.json_logs)

    if args.command == "check":
        security_self_check()
        print("✓ Security self-check passed")
        return

    if args.command == "gen-secret":
        print(generate_shared_secret(settings.secret_length))
        return

    if args.command == "link":
        print(build_approval_link(args.uuid, args.user, args.key, args.host))
        return

    if args.command == "parse-callback":
        payload = parse_callback(args.uri)
        if payload is None:
            print("Not a HiveAuth callback URI")
            sys.exit(1)
        print(json.dumps(payload.model_dump(), indent=2))
        return

    try:
        if args.command == "login":
            code = asyncio.run(run_login(settings, args.user, args.sign_message))
        else:
            code = asyncio.run(run_resume(settings))
    except KeyboardInterrupt:
        logger.info("client_shutdown", reason="keyboard_interrupt")
        print("\nShutting down...")
        code = 130
    except HasError as e:
        logger.error("request_failed", error_type=type(e).__name__, error=str(e))
        print(f"{type(e).__name__}: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
