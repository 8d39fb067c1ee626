from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.providers.storage.factory import get_r2_adapter
from imgbed.providers.storage.r2 import R2StorageAdapter
from imgbed.services.assets import DEFAULT_LIST_SIZE, MAX_LIST_SIZE, delete_assets, list_assets, serialize_asset
from imgbed.services.tags import update_asset_tags


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AssetListRequest(BaseModel):
    page: int = Field(default=0, ge=0)
    size: int = Field(default=DEFAULT_LIST_SIZE)
    query: str = ""


class AssetDeleteRequest(BaseModel):
    names: list[Any] = Field(default_factory=list)
    name: str | None = None


class AssetTagsRequest(BaseModel):
    url: str = ""
    tags: list[Any] = Field(default_factory=list)


@router.post("/list")
async def post_asset_list(
    payload: AssetListRequest,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    size = min(max(payload.size, 1), MAX_LIST_SIZE)
    rows, total = await list_assets(db, page=payload.page, size=size, query=payload.query.strip() or None)
    return success_response(
        {
            "items": [serialize_asset(row) for row in rows],
            "page": payload.page,
            "size": size,
            "total": total,
        }
    )


@router.delete("/delete")
async def delete_asset_records(
    payload: AssetDeleteRequest,
    db: AsyncSession = Depends(get_db),
    adapter: R2StorageAdapter = Depends(get_r2_adapter),
    principal: Principal = Depends(require_admin),
):
    names = [item.strip() for item in payload.names if isinstance(item, str) and item.strip()]
    if payload.name and payload.name.strip():
        names.append(payload.name.strip())
    if not names:
        raise HTTPException(status_code=400, detail="no valid delete target")

    # Object cleanup only applies when a bucket is configured.
    object_deleter = adapter.delete_object if adapter.is_configured() else None
    outcome = await delete_assets(db, names, object_deleter=object_deleter)
    logger.info(
        "assets_deleted deleted=%s failed=%s actor=%s",
        len(outcome.deleted),
        len(outcome.failed),
        principal.user_id,
    )
    body = {
        "success": outcome.success,
        "data": {"deleted": outcome.deleted, "failed": outcome.failed},
    }
    return JSONResponse(content=body, status_code=200 if outcome.success else 207)


@router.patch("/tags")
async def patch_asset_tags(
    payload: AssetTagsRequest,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    if not payload.url.strip():
        raise HTTPException(status_code=400, detail="url is required")
    updated = await update_asset_tags(db, payload.url, [item for item in payload.tags if isinstance(item, str)])
    if updated is None:
        raise HTTPException(status_code=404, detail="asset not found")
    tags, storage = updated
    return success_response({"tags": tags, "storage": storage})
