from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.services.ip_blocks import (
    MANUAL_BLOCK_REASON,
    expiry_from_hours,
    list_blocks,
    remove_block,
    upsert_block,
)
from imgbed.services.upload_logs import (
    UploadLogFilters,
    clamp_page,
    clamp_page_size,
    list_upload_logs,
    log_stats,
    recent_daily,
    serialize_upload_log,
    top_ips,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/logs", tags=["admin"])

_TRUE_FILTERS = {"true", "1", "yes"}
_FALSE_FILTERS = {"false", "0", "no"}


class BlockRequest(BaseModel):
    ip: str = ""
    reason: str | None = None
    hours: float | None = Field(default=None, allow_inf_nan=False, le=876000)


def parse_bool_filter(value: str | None) -> bool | None:
    lowered = (value or "").strip().lower()
    if lowered in _TRUE_FILTERS:
        return True
    if lowered in _FALSE_FILTERS:
        return False
    return None


def parse_time_bound(value: str | None, *, end_of_day: bool = False) -> datetime | None:
    # Accept ISO datetimes or bare dates; naive values are read as UTC.
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            bound = datetime.combine(day, time.min, tzinfo=timezone.utc)
            # A bare end date covers that whole day.
            return bound + timedelta(days=1) - timedelta(microseconds=1) if end_of_day else bound
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"invalid date: {raw}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@router.get("")
async def get_upload_logs(
    page: str | None = Query(default=None),
    page_size: str | None = Query(default=None, alias="pageSize"),
    search: str | None = Query(default=None),
    ip: str | None = Query(default=None),
    status: str | None = Query(default=None),
    compliant: str | None = Query(default=None),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    page_number = clamp_page(page)
    size = clamp_page_size(page_size)
    filters = UploadLogFilters(
        search=(search or "").strip() or None,
        ip=(ip or "").strip() or None,
        status=(status or "").strip() or None,
        compliant=parse_bool_filter(compliant),
        start=parse_time_bound(start),
        end=parse_time_bound(end, end_of_day=True),
    )
    rows, total = await list_upload_logs(db, filters=filters, page=page_number, page_size=size)
    return success_response(
        {
            "pagination": {
                "page": page_number,
                "pageSize": size,
                "total": total,
                "totalPages": max(1, math.ceil(total / size)),
            },
            "logs": [serialize_upload_log(row) for row in rows],
            "stats": await log_stats(db),
            "recent": await recent_daily(db),
            "topIps": await top_ips(db),
        }
    )


@router.get("/block")
async def get_blocks(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    return success_response([entry.as_dict() for entry in await list_blocks(db)])


@router.post("/block")
async def post_block(
    payload: BlockRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict:
    ip = payload.ip.strip()
    if not ip:
        raise HTTPException(status_code=400, detail="ip is required")
    reason = (payload.reason or "").strip() or MANUAL_BLOCK_REASON
    await upsert_block(db, ip, reason=reason, expires_at=expiry_from_hours(payload.hours))
    logger.info("ip_block_set ip=%s hours=%s actor=%s", ip, payload.hours, principal.user_id)
    return success_response([entry.as_dict() for entry in await list_blocks(db)], message="block updated")


@router.delete("/block")
async def delete_block(
    ip: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict:
    target = (ip or "").strip()
    if not target:
        raise HTTPException(status_code=400, detail="ip query parameter is required")
    await remove_block(db, target)
    logger.info("ip_block_removed ip=%s actor=%s", target, principal.user_id)
    return success_response([entry.as_dict() for entry in await list_blocks(db)], message="block removed")
