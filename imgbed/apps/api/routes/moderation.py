from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.services.app_config import MODERATION_ENABLED_KEY, is_moderation_enabled, set_boolean_config


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["moderation"])


class ModerationToggleRequest(BaseModel):
    enabled: bool


@router.get("/moderation")
async def get_moderation_status(db: AsyncSession = Depends(get_db)) -> dict:
    # Public read so upload pages can warn users before they submit.
    return success_response({"enabled": await is_moderation_enabled(db)})


@router.get("/admin/moderation")
async def get_admin_moderation(
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    return success_response({"enabled": await is_moderation_enabled(db)})


@router.patch("/admin/moderation")
async def patch_admin_moderation(
    payload: ModerationToggleRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict:
    enabled = await set_boolean_config(db, MODERATION_ENABLED_KEY, payload.enabled)
    logger.info("moderation_toggled enabled=%s actor=%s", enabled, principal.user_id)
    return success_response(
        {"enabled": enabled},
        message="moderation enabled" if enabled else "moderation disabled",
    )
