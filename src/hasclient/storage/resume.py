from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict

from hasclient.storage.files import read_json, remove, write_json


class StoredPendingAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    correlation_id: str
    username: str
    shared_secret: str
    relay_host: Optional[str] = None
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) > self.expires_at


class ResumptionStore(ABC):
    """Holds at most one in-flight authentication request."""

    @abstractmethod
    async def save(self, record: StoredPendingAuthentication) -> None:
        raise NotImplementedError

    @abstractmethod
    async def load(self) -> StoredPendingAuthentication | None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryResumptionStore(ResumptionStore):
    def __init__(self) -> None:
        self._record: StoredPendingAuthentication | None = None

    async def save(self, record: StoredPendingAuthentication) -> None:
        self._record = record

    async def load(self) -> StoredPendingAuthentication | None:
        return self._record

    async def clear(self) -> None:
        self._record = None


class FileResumptionStore(ResumptionStore):
    def __init__(self, path: str | Path = ".hasclient/pending_auth.json") -> None:
        self._path = Path(path)

    async def save(self, record: StoredPendingAuthentication) -> None:
        write_json(self._path, record.model_dump())

    async def load(self) -> StoredPendingAuthentication | None:
        raw = read_json(self._path)
        if raw is None:
            return None
        return StoredPendingAuthentication.model_validate(raw)

    async def clear(self) -> None:
        remove(self._path)
