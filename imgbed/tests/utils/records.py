from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from imgbed.domain.models import Asset, FileAccessLog, UploadLog
from imgbed.persistence.db import SessionLocal


class FailingCommitSession:
    # Stands in for SessionLocal() when a store must see its commit fail.
    def __init__(self) -> None:
        self.added: list[Any] = []
        self.rolled_back = False

    async def __aenter__(self) -> "FailingCommitSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def add(self, entry: Any) -> None:
        self.added.append(entry)

    async def commit(self) -> None:
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    async def rollback(self) -> None:
        self.rolled_back = True


async def fetch_upload_logs() -> list[UploadLog]:
    async with SessionLocal() as session:
        result = await session.execute(select(UploadLog).order_by(UploadLog.id))
        return list(result.scalars().all())


async def fetch_assets() -> list[Asset]:
    async with SessionLocal() as session:
        result = await session.execute(select(Asset).order_by(Asset.id))
        return list(result.scalars().all())


async def fetch_file_access_logs() -> list[FileAccessLog]:
    async with SessionLocal() as session:
        result = await session.execute(select(FileAccessLog).order_by(FileAccessLog.id))
        return list(result.scalars().all())
