from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.apps.api.deps import Principal, get_db, require_admin
from imgbed.apps.api.response import success_response
from imgbed.services.tags import list_tags, register_tag


router = APIRouter(prefix="/api", tags=["tags"])


class TagCreateRequest(BaseModel):
    name: str = ""


@router.get("/tags")
async def get_tags(db: AsyncSession = Depends(get_db)) -> dict:
    return success_response(await list_tags(db))


@router.post("/tags")
async def post_tag(
    payload: TagCreateRequest,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_admin),
) -> dict:
    tag = await register_tag(db, payload.name)
    if tag is None:
        raise HTTPException(status_code=400, detail="tag name is empty or reserved")
    return success_response(await list_tags(db), message=f"tag {tag} registered")
