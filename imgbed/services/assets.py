from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.domain.models import Asset, TelegramFileMeta, as_utc, utc_now
from imgbed.persistence.db import dialect_insert
from imgbed.services.tags import normalize_asset_url, parse_storage_string


logger = logging.getLogger(__name__)

DEFAULT_LIST_SIZE = 5
MAX_LIST_SIZE = 50

R2_URL_PREFIX = "/rfile/"


async def insert_asset(
    session: AsyncSession,
    *,
    url: str,
    storage: str,
    referer: str,
    ip: str,
    rating: int | None,
    time: str,
    tags: str = "",
) -> None:
    # Re-uploading the same key refreshes the row and bumps its counter.
    values = {
        "url": url,
        "storage": storage,
        "referer": referer,
        "ip": ip,
        "rating": rating,
        "total": 1,
        "tags": tags,
        "time": time,
        "created_at": utc_now(),
    }
    stmt = dialect_insert(session, Asset).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Asset.url],
        set_={
            "referer": referer,
            "ip": ip,
            "rating": rating,
            "tags": tags,
            "time": time,
            "total": Asset.total + 1,
        },
    )
    await session.execute(stmt)
    await session.commit()


async def save_telegram_meta(
    session: AsyncSession,
    *,
    file_id: str,
    file_name: str | None,
    message_id: int | None,
    chat_id: str | None,
) -> None:
    if not file_id:
        return
    stmt = dialect_insert(session, TelegramFileMeta).values(
        file_id=file_id, file_name=file_name, message_id=message_id, chat_id=chat_id
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[TelegramFileMeta.file_id],
        set_={"file_name": file_name, "message_id": message_id, "chat_id": chat_id},
    )
    await session.execute(stmt)
    await session.commit()


async def get_asset(session: AsyncSession, url: str) -> Asset | None:
    result = await session.execute(select(Asset).where(Asset.url == url))
    return result.scalar_one_or_none()


async def get_telegram_meta(session: AsyncSession, file_id: str) -> TelegramFileMeta | None:
    result = await session.execute(select(TelegramFileMeta).where(TelegramFileMeta.file_id == file_id))
    return result.scalar_one_or_none()


async def list_assets(
    session: AsyncSession,
    *,
    page: int = 0,
    size: int = DEFAULT_LIST_SIZE,
    query: str | None = None,
) -> tuple[list[Asset], int]:
    # Zero-based pages, newest first; query matches anywhere in the url.
    stmt = select(Asset)
    count_stmt = select(func.count()).select_from(Asset)
    if query:
        pattern = f"%{query}%"
        stmt = stmt.where(Asset.url.like(pattern))
        count_stmt = count_stmt.where(Asset.url.like(pattern))
    stmt = stmt.order_by(Asset.id.desc()).offset(page * size).limit(size)
    rows = list((await session.execute(stmt)).scalars().all())
    total = int((await session.execute(count_stmt)).scalar_one() or 0)
    return rows, total


def serialize_asset(asset: Asset) -> dict[str, Any]:
    created_at = as_utc(asset.created_at)
    return {
        "id": asset.id,
        "url": asset.url,
        "storage": asset.storage,
        "referer": asset.referer,
        "ip": asset.ip,
        "rating": asset.rating,
        "total": asset.total,
        "tags": parse_storage_string(asset.tags),
        "time": asset.time,
        "createdAt": created_at.isoformat() if created_at else None,
    }


def resolve_r2_key(url: str) -> str:
    # Map an asset reference back to its R2 object key; empty when not an R2 asset.
    canonical = normalize_asset_url(url)
    if not canonical.startswith(R2_URL_PREFIX):
        return ""
    return canonical[len(R2_URL_PREFIX):]


@dataclass
class DeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


async def delete_assets(
    session: AsyncSession,
    urls: list[str],
    *,
    object_deleter: Callable[[str], Awaitable[None]] | None = None,
) -> DeleteResult:
    # Remove index rows first; object deletion is best-effort per url.
    outcome = DeleteResult()
    for url in dict.fromkeys(item.strip() for item in urls if item and item.strip()):
        result = await session.execute(delete(Asset).where(Asset.url == url))
        await session.commit()
        if not result.rowcount:
            outcome.failed.append({"url": url, "reason": "record not found or already deleted"})
            continue
        key = resolve_r2_key(url)
        if key and object_deleter is not None:
            try:
                await object_deleter(key)
            except Exception as exc:  # noqa: BLE001 - index row is already gone
                logger.warning("asset_object_delete_failed key=%s", key, exc_info=exc)
        outcome.deleted.append(url)
    return outcome
