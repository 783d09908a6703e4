"""Passphrase encryption compatible with the relay and approver apps.

Ciphertext is the OpenSSL "salted" layout that CryptoJS produces for
``AES.encrypt(text, passphrase)``: base64 of ``Salted__`` + 8 byte salt +
AES-256-CBC ciphertext with PKCS7 padding. Key and IV come from the
passphrase and salt through EVP_BytesToKey.
"""
from __future__ import annotations
import json
from typing import Any, Dict

from hasclient.crypto.primitives import decode_b64, encode_b64, evp_bytes_to_key, random_bytes
from hasclient.errors import DecryptionError

SALT_MAGIC = b"Salted__"
SALT_LEN = 8
BLOCK_BITS = 128

def require_aes():
    try:
        from cryptography.hazmat.primitives import padding
        from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
        return Cipher, algorithms, modes, padding
    except ImportError as e:
        raise RuntimeError("Missing dependency 'cryptography'") from e

def encrypt_text(text: str, secret: str) -> str:
    Cipher, algorithms, modes, padding = require_aes()
    salt = random_bytes(SALT_LEN)
    key, iv = evp_bytes_to_key(secret.encode("utf-8"), salt)

    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()
    enc = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = enc.update(padded) + enc.finalize()
    return encode_b64(SALT_MAGIC + salt + ct)

def decrypt_text(ciphertext: str, secret: str) -> str:
    Cipher, algorithms, modes, padding = require_aes()
    if not isinstance(ciphertext, str) or not ciphertext:
        raise DecryptionError("Empty ciphertext")
    try:
        blob = decode_b64(ciphertext)
    except ValueError as e:
        raise DecryptionError(f"Ciphertext is not base64: {e}") from e

    header = len(SALT_MAGIC) + SALT_LEN
    if not blob.startswith(SALT_MAGIC) or len(blob) <= header:
        raise DecryptionError("Ciphertext has no salt header")
    body = blob[header:]
    if len(body) % (BLOCK_BITS // 8):
        raise DecryptionError("Ciphertext is not block aligned")

    key, iv = evp_bytes_to_key(secret.encode("utf-8"), blob[len(SALT_MAGIC):header])
    dec = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = dec.update(body) + dec.finalize()
    try:
        unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        # bad padding or garbage bytes mean the secret does not match
        raise DecryptionError("Secret mismatch or corrupt ciphertext") from e

def encrypt_json(payload: Any, secret: str) -> str:
    return encrypt_text(json.dumps(payload, ensure_ascii=False, separators=(",", ":")), secret)

def decrypt_json(ciphertext: str, secret: str) -> Dict[str, Any]:
    text = decrypt_text(ciphertext, secret)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DecryptionError("Decrypted payload is not JSON") from e
    if not isinstance(data, dict):
        raise DecryptionError("Decrypted payload is not a JSON object")
    return data
