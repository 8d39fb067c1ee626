from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.domain.models import Asset, FileAccessLog, utc_now
from imgbed.persistence.db import SessionLocal
from imgbed.services.upload_pipeline import format_now_time


logger = logging.getLogger(__name__)

ACCESS_LOG_PAGE_SIZE = 20


async def record_file_access(
    *,
    url: str,
    referer: str = "",
    ip: str = "",
    now: datetime | None = None,
) -> bool:
    # Serving a file must never fail because its access row could not be written.
    stamp = now or utc_now()
    entry = FileAccessLog(
        url=url,
        referer=referer or "",
        ip=ip or "",
        time=format_now_time(stamp),
        created_at=stamp,
    )
    async with SessionLocal() as log_session:
        try:
            log_session.add(entry)
            await log_session.commit()
        except Exception as exc:  # noqa: BLE001 - access logging is non-fatal
            await log_session.rollback()
            logger.warning("file_access_log_write_failed url=%s ip=%s", url, ip, exc_info=exc)
            return False
    return True


def _search_clause(query: str | None):
    if not query or not query.strip():
        return None
    pattern = f"%{query.strip()}%"
    return or_(
        FileAccessLog.url.like(pattern),
        FileAccessLog.ip.like(pattern),
        FileAccessLog.referer.like(pattern),
    )


async def list_file_access(
    session: AsyncSession,
    *,
    page: int = 0,
    query: str | None = None,
    page_size: int = ACCESS_LOG_PAGE_SIZE,
) -> tuple[list[dict[str, Any]], int]:
    # Zero-based pages, newest first; rating and total come from the asset index when present.
    stmt = select(FileAccessLog, Asset.rating, Asset.total).outerjoin(Asset, Asset.url == FileAccessLog.url)
    count_stmt = select(func.count()).select_from(FileAccessLog)
    clause = _search_clause(query)
    if clause is not None:
        stmt = stmt.where(clause)
        count_stmt = count_stmt.where(clause)
    stmt = stmt.order_by(FileAccessLog.id.desc()).offset(max(page, 0) * page_size).limit(page_size)
    rows = (await session.execute(stmt)).all()
    total = int((await session.execute(count_stmt)).scalar_one() or 0)
    return [serialize_file_access(entry, rating=rating, total=uploads) for entry, rating, uploads in rows], total


async def latest_file_access(session: AsyncSession, url: str) -> FileAccessLog | None:
    stmt = select(FileAccessLog).where(FileAccessLog.url == url).order_by(FileAccessLog.id.desc()).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def count_file_access(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count()).select_from(FileAccessLog))).scalar_one() or 0)


def serialize_file_access(
    entry: FileAccessLog,
    *,
    rating: int | None = None,
    total: int | None = None,
) -> dict[str, Any]:
    return {
        "id": entry.id,
        "url": entry.url,
        "referer": entry.referer,
        "ip": entry.ip,
        "time": entry.time,
        "rating": rating,
        "total": total,
    }
