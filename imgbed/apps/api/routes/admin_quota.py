from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.services.app_config import set_quota_limits
from imgbed.services.quota import usage_snapshot


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class QuotaLimitsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anonymous_limit: int = Field(alias="anonymousLimit", ge=0)
    user_limit: int = Field(alias="userLimit", ge=0)


@router.get("/quota")
async def get_quota(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    return success_response(await usage_snapshot(db))


@router.patch("/quota")
async def patch_quota(
    payload: QuotaLimitsRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict:
    limits = await set_quota_limits(db, anonymous=payload.anonymous_limit, user=payload.user_limit)
    logger.info(
        "quota_limits_updated anonymous=%s user=%s actor=%s",
        limits.anonymous,
        limits.user,
        principal.user_id,
    )
    return success_response({"limits": limits.as_dict()}, message="quota limits updated")
