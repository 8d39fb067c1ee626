from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from imgbed.apps.api.deps import resolve_client_ip, resolve_referer
from imgbed.providers.storage.factory import get_r2_adapter, get_telegram_adapter
from imgbed.providers.storage.r2 import INDEX_PREFIX as R2_INDEX_PREFIX
from imgbed.providers.storage.r2 import R2StorageAdapter
from imgbed.providers.storage.telegram import INDEX_PREFIX as TELEGRAM_INDEX_PREFIX
from imgbed.providers.storage.telegram import TelegramStorageAdapter
from imgbed.services.access_logs import record_file_access


router = APIRouter(prefix="/api", tags=["files"])

CACHE_CONTROL = "public, max-age=86400"


async def _record_access(request: Request, url: str) -> None:
    await record_file_access(url=url, referer=resolve_referer(request), ip=resolve_client_ip(request))


@router.get("/rfile/{name:path}")
async def serve_r2_file(
    name: str,
    request: Request,
    adapter: R2StorageAdapter = Depends(get_r2_adapter),
) -> Response:
    adapter.ensure_configured()
    fetched = await adapter.fetch(name)
    if fetched is None:
        raise HTTPException(status_code=404, detail="file not found")
    await _record_access(request, f"{R2_INDEX_PREFIX}/{name}")
    return Response(content=fetched.data, media_type=fetched.content_type, headers={"Cache-Control": CACHE_CONTROL})


@router.get("/cfile/{file_id}")
async def serve_telegram_file(
    file_id: str,
    request: Request,
    adapter: TelegramStorageAdapter = Depends(get_telegram_adapter),
) -> Response:
    # Proxy the channel file so the bot token never reaches clients.
    adapter.ensure_configured()
    fetched = await adapter.fetch(file_id)
    await _record_access(request, f"{TELEGRAM_INDEX_PREFIX}/{file_id}")
    return Response(content=fetched.data, media_type=fetched.content_type, headers={"Cache-Control": CACHE_CONTROL})
