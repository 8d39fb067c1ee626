from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from imgbed.apps.api.deps import (
    Principal,
    get_db,
    get_moderation,
    get_principal,
    resolve_client_ip,
    resolve_origin,
    resolve_referer,
)
from imgbed.providers.moderation.client import ModerationClient
from imgbed.providers.storage.base import IncomingFile, StorageAdapter
from imgbed.providers.storage.factory import get_legacy_adapter, get_r2_adapter, get_telegram_adapter
from imgbed.services.upload_pipeline import UploadContext, UploadPipeline


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/enableauthapi", tags=["uploads"])


async def _read_form(request: Request) -> tuple[list[UploadFile], str]:
    form = await request.form()
    files = [item for item in form.getlist("file") if isinstance(item, UploadFile)]
    tags = form.get("tags")
    return files, tags if isinstance(tags, str) else ""


async def _to_incoming(upload: UploadFile | None) -> IncomingFile | None:
    if upload is None:
        return None
    return IncomingFile(
        filename=upload.filename or "",
        content_type=upload.content_type or "",
        data=await upload.read(),
    )


async def _handle_upload(
    request: Request,
    *,
    session: AsyncSession,
    adapter: StorageAdapter,
    moderation: ModerationClient,
    principal: Principal,
    single_file: bool = False,
) -> dict:
    # File count and size are judged by the pipeline, after the IP block check.
    files, tags = await _read_form(request)
    upload = await _to_incoming(files[0] if files else None)
    context = UploadContext(
        client_ip=resolve_client_ip(request),
        referer=resolve_referer(request),
        origin=resolve_origin(request),
        role=principal.role,
        identity=principal.user_id,
        tags=tags,
        file_count=len(files),
        single_file=single_file,
    )
    pipeline = UploadPipeline(adapter, moderation=moderation)
    outcome = await pipeline.run(session, upload, context)
    return outcome.as_response()


@router.post("/r2")
async def upload_r2(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: StorageAdapter = Depends(get_r2_adapter),
    moderation: ModerationClient = Depends(get_moderation),
    principal: Principal = Depends(get_principal),
) -> dict:
    return await _handle_upload(request, session=db, adapter=adapter, moderation=moderation, principal=principal)


@router.post("/tgchannel")
async def upload_telegram(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: StorageAdapter = Depends(get_telegram_adapter),
    moderation: ModerationClient = Depends(get_moderation),
    principal: Principal = Depends(get_principal),
) -> dict:
    return await _handle_upload(
        request,
        session=db,
        adapter=adapter,
        moderation=moderation,
        principal=principal,
        single_file=True,
    )


@router.post("/legacy")
async def upload_legacy(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: StorageAdapter = Depends(get_legacy_adapter),
    moderation: ModerationClient = Depends(get_moderation),
    principal: Principal = Depends(get_principal),
) -> dict:
    return await _handle_upload(
        request,
        session=db,
        adapter=adapter,
        moderation=moderation,
        principal=principal,
        single_file=True,
    )
