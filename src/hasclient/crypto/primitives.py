from __future__ import annotations
import base64
import binascii
import hashlib
import secrets
from hasclient.errors import ConfigError
from hasclient.protocol.constants import MAX_B64_LENGTH, SECRET_ALPHABET, SECRET_LENGTH

def md5(b: bytes) -> bytes:
    return hashlib.md5(b, usedforsecurity=False).digest()

def evp_bytes_to_key(password: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> tuple[bytes, bytes]:
    # OpenSSL EVP_BytesToKey with MD5 and a single round, as CryptoJS does for passphrases
    out, block = b"", b""
    while len(out) < key_len + iv_len:
        block = md5(block + password + salt)
        out += block
    return out[:key_len], out[key_len:key_len + iv_len]

def encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def decode_b64(text: str) -> bytes:
    """Strict standard-alphabet decode; any defect surfaces as ValueError."""
    if len(text) > MAX_B64_LENGTH:
        raise ValueError(f"Base64 input too long: {len(text)} > {MAX_B64_LENGTH}")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (UnicodeEncodeError, binascii.Error) as e:
        raise ValueError(f"Invalid base64: {e}") from e

def random_bytes(n: int) -> bytes:
    try:
        return secrets.token_bytes(n)
    except NotImplementedError as e:
        raise ConfigError("No secure random source available") from e

def generate_shared_secret(length: int = SECRET_LENGTH) -> str:
    if length < 16:
        raise ConfigError(f"Shared secret too short: {length} < 16")
    try:
        return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))
    except NotImplementedError as e:
        raise ConfigError("No secure random source available") from e
