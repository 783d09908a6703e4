from __future__ import annotations

DEFAULT_HAS_URL = "wss://hive-auth.arcange.eu/"

KNOWN_SERVERS = {
    "arcange": "wss://hive-auth.arcange.eu/",
    "hiveauth": "wss://has.hiveauth.com/",
}

ALLOWED_SCHEMES = ("ws", "wss")

LINK_PREFIX = "has://auth_req/"


class Cmd:
    AUTH_REQ = "auth_req"
    AUTH_ATTACH = "auth_attach"
    SIGN_REQ = "sign_req"

    CONNECTED = "connected"
    AUTH_WAIT = "auth_wait"
    AUTH_ACK = "auth_ack"
    AUTH_NACK = "auth_nack"
    AUTH_ERR = "auth_err"
    SIGN_WAIT = "sign_wait"
    SIGN_ACK = "sign_ack"
    SIGN_NACK = "sign_nack"
    SIGN_ERR = "sign_err"


AUTH_CMDS = {Cmd.AUTH_WAIT, Cmd.AUTH_ACK, Cmd.AUTH_NACK, Cmd.AUTH_ERR}
SIGN_CMDS = {Cmd.SIGN_WAIT, Cmd.SIGN_ACK, Cmd.SIGN_NACK, Cmd.SIGN_ERR}

DEFAULT_HANDSHAKE_TIMEOUT_MS = 60_000
TIMEOUT_GRACE_MS = 5_000

SECRET_LENGTH = 32
SECRET_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

# epoch values at or above this are milliseconds
EPOCH_MS_THRESHOLD = 10**12

MAX_MSG_BYTES = 64 * 1024
MAX_JSON_DEPTH = 10
MAX_JSON_KEYS = 100
MAX_B64_LENGTH = 256 * 1024

DEFAULT_APP_NAME = "hasclient"
DEFAULT_APP_DESCRIPTION = "HiveAuth client"
DEFAULT_KEY_TYPE = "posting"
DEFAULT_CUSTOM_JSON_ID = "hasclient"
