from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.services.access_logs import (
    ACCESS_LOG_PAGE_SIZE,
    count_file_access,
    latest_file_access,
    list_file_access,
    record_file_access,
    serialize_file_access,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/log", tags=["admin"])

TEST_ACCESS_URL = "/test/log/test"
TEST_ACCESS_REFERER = "test-referer"
TEST_ACCESS_IP = "127.0.0.1"


class AccessLogListRequest(BaseModel):
    page: int = Field(default=0, ge=0)
    query: str | None = None


@router.post("")
async def post_access_log_list(
    payload: AccessLogListRequest,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    items, total = await list_file_access(db, page=payload.page, query=payload.query)
    return success_response(
        {"items": items, "page": payload.page, "pageSize": ACCESS_LOG_PAGE_SIZE, "total": total}
    )


@router.get("/test")
async def get_access_log_self_test(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict:
    # Write a marker row and read it back to confirm the access log is writable.
    written = await record_file_access(url=TEST_ACCESS_URL, referer=TEST_ACCESS_REFERER, ip=TEST_ACCESS_IP)
    entry = await latest_file_access(db, TEST_ACCESS_URL) if written else None
    if entry is None:
        raise HTTPException(status_code=500, detail="access log write failed")
    logger.info("access_log_self_test actor=%s entry_id=%s", principal.user_id, entry.id)
    return success_response(
        {"entry": serialize_file_access(entry), "totalLogs": await count_file_access(db)},
        message="access log test succeeded",
    )
