from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StoredObject:
    # reference is the backend key: R2 object key, Telegram file_id or legacy path.
    reference: str
    display_name: str
    url: str
    index_url: str
    message_id: int | None = None
    chat_id: str | None = None


@dataclass(frozen=True)
class FetchedObject:
    data: bytes
    content_type: str


class StorageAdapter(Protocol):
    name: str

    def ensure_configured(self) -> None:
        ...

    async def store(self, upload: IncomingFile, *, origin: str) -> StoredObject:
        ...

    async def resolve_public_url(self, stored: StoredObject) -> str:
        ...

    async def retract(self, stored: StoredObject) -> None:
        ...
