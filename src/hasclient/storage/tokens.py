from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path

from hasclient.storage.files import read_json, remove, write_json


@dataclass(frozen=True)
class StoredToken:
    token: str
    username: str


class TokenStore(ABC):
    @abstractmethod
    async def set_token(self, token: str, username: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_token(self) -> StoredToken | None:
        raise NotImplementedError

    @abstractmethod
    async def clear_token(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._stored: StoredToken | None = None

    async def set_token(self, token: str, username: str) -> None:
        self._stored = StoredToken(token, username)

    async def get_token(self) -> StoredToken | None:
        return self._stored

    async def clear_token(self) -> None:
        self._stored = None


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".hasclient/token.json") -> None:
        self._path = Path(path)

    async def set_token(self, token: str, username: str) -> None:
        write_json(self._path, asdict(StoredToken(token, username)))

    async def get_token(self) -> StoredToken | None:
        raw = read_json(self._path)
        if raw is None:
            return None
        if not isinstance(raw, dict) or not raw.get("token") or not raw.get("username"):
            raise RuntimeError("Token store file is invalid; expected token and username.")
        return StoredToken(token=raw["token"], username=raw["username"])

    async def clear_token(self) -> None:
        remove(self._path)
