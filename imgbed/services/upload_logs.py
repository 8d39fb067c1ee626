from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.domain.models import UploadLog, as_utc, utc_now
from imgbed.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_BLOCKED = "blocked"
STATUS_ERROR = "error"
UPLOAD_STATUSES = (STATUS_SUCCESS, STATUS_BLOCKED, STATUS_ERROR)

DEFAULT_PAGE_SIZE = 20
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100
RECENT_DAYS = 14
TOP_IP_LIMIT = 10


@dataclass(frozen=True)
class UploadLogFilters:
    # Optional filters for the admin log listing; None means unfiltered.
    search: str | None = None
    ip: str | None = None
    status: str | None = None
    compliant: bool | None = None
    start: datetime | None = None
    end: datetime | None = None


def clamp_page(value: Any, fallback: int = 1) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return fallback
    return page if page > 0 else fallback


def clamp_page_size(value: Any, fallback: int = DEFAULT_PAGE_SIZE) -> int:
    # Keep page sizes within 5..100 so listings stay bounded.
    try:
        size = int(value)
    except (TypeError, ValueError):
        return fallback
    if size <= 0:
        return fallback
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, size))


def sanitize_like(value: str) -> str:
    # Strip LIKE wildcards from user input before wrapping it.
    cleaned = value.replace("%", "").replace("_", "")
    return f"%{cleaned}%"


async def record_upload_log(
    *,
    file_name: str = "unknown",
    storage: str = "r2",
    ip: str = "",
    referer: str = "",
    rating: int | None = None,
    compliant: bool = True,
    status: str = STATUS_SUCCESS,
    message: str = "",
    created_at: datetime | None = None,
) -> bool:
    # Best-effort insert on a dedicated session; logging must never break uploads.
    entry = UploadLog(
        file_name=file_name or "unknown",
        storage=storage,
        ip=ip or "",
        referer=referer or "",
        rating=rating,
        compliant=bool(compliant),
        status=status,
        message=message or "",
        created_at=created_at or utc_now(),
    )
    async with SessionLocal() as log_session:
        try:
            log_session.add(entry)
            await log_session.commit()
        except Exception as exc:  # noqa: BLE001 - log writes are non-fatal
            await log_session.rollback()
            logger.warning(
                "upload_log_write_failed status=%s ip=%s file_name=%s",
                status,
                ip,
                file_name,
                exc_info=exc,
            )
            return False
    return True


def _apply_filters(stmt, filters: UploadLogFilters):
    if filters.ip:
        stmt = stmt.where(UploadLog.ip == filters.ip)
    if filters.status:
        stmt = stmt.where(UploadLog.status == filters.status)
    if filters.compliant is not None:
        stmt = stmt.where(UploadLog.compliant.is_(filters.compliant))
    if filters.search:
        pattern = sanitize_like(filters.search)
        stmt = stmt.where(
            UploadLog.file_name.like(pattern)
            | UploadLog.message.like(pattern)
            | UploadLog.referer.like(pattern)
        )
    if filters.start:
        stmt = stmt.where(UploadLog.created_at >= filters.start)
    if filters.end:
        stmt = stmt.where(UploadLog.created_at <= filters.end)
    return stmt


async def list_upload_logs(
    session: AsyncSession,
    *,
    filters: UploadLogFilters,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[UploadLog], int]:
    # Return one page of logs (newest first) plus the filtered total.
    count_stmt = _apply_filters(select(func.count()).select_from(UploadLog), filters)
    total = int((await session.execute(count_stmt)).scalar_one() or 0)

    stmt = _apply_filters(select(UploadLog), filters)
    stmt = stmt.order_by(UploadLog.created_at.desc(), UploadLog.id.desc())
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


def _violation_sum():
    return func.sum(case((UploadLog.compliant.is_(False), 1), else_=0))


async def log_stats(session: AsyncSession) -> dict[str, int]:
    # Global counters across the whole log, independent of listing filters.
    stmt = select(
        func.count(UploadLog.id),
        _violation_sum(),
        func.sum(case((UploadLog.status == STATUS_BLOCKED, 1), else_=0)),
        func.sum(case((UploadLog.status == STATUS_ERROR, 1), else_=0)),
    )
    total, violations, blocked, failed = (await session.execute(stmt)).one()
    return {
        "total": int(total or 0),
        "violations": int(violations or 0),
        "blocked": int(blocked or 0),
        "failed": int(failed or 0),
    }


async def recent_daily(
    session: AsyncSession,
    *,
    days: int = RECENT_DAYS,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    # Daily totals and violations for the trailing window, newest day first.
    since = (now or utc_now()) - timedelta(days=days)
    day = func.date(UploadLog.created_at).label("day")
    stmt = (
        select(day, func.count(UploadLog.id), _violation_sum())
        .where(UploadLog.created_at >= since)
        .group_by(day)
        .order_by(day.desc())
    )
    rows = (await session.execute(stmt)).all()
    return [
        {"day": str(row_day), "total": int(total or 0), "violations": int(violations or 0)}
        for row_day, total, violations in rows
    ]


async def top_ips(session: AsyncSession, *, limit: int = TOP_IP_LIMIT) -> list[dict[str, Any]]:
    # Rank IPs by violations first, then by total attempts.
    total = func.count(UploadLog.id).label("total")
    violations = _violation_sum().label("violations")
    stmt = (
        select(UploadLog.ip, total, violations)
        .where(UploadLog.ip.is_not(None), UploadLog.ip != "")
        .group_by(UploadLog.ip)
        .order_by(violations.desc(), total.desc())
        .limit(limit)
    )
    rows = (await session.execute(stmt)).all()
    return [
        {"ip": ip, "total": int(row_total or 0), "violations": int(row_violations or 0)}
        for ip, row_total, row_violations in rows
    ]


async def count_violations_since(session: AsyncSession, *, ip: str, since: datetime) -> int:
    stmt = select(func.count(UploadLog.id)).where(
        UploadLog.ip == ip,
        UploadLog.compliant.is_(False),
        UploadLog.created_at >= since,
    )
    return int((await session.execute(stmt)).scalar_one() or 0)


def serialize_upload_log(entry: UploadLog) -> dict[str, Any]:
    created_at = as_utc(entry.created_at)
    return {
        "id": entry.id,
        "fileName": entry.file_name,
        "storage": entry.storage,
        "ip": entry.ip,
        "referer": entry.referer,
        "rating": entry.rating,
        "compliant": bool(entry.compliant),
        "status": entry.status,
        "message": entry.message,
        "createdAt": created_at.isoformat() if created_at else None,
    }
