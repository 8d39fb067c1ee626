from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from imgbed.core.config import get_settings
from imgbed.core.errors import ConfigurationError, StorageError
from imgbed.providers.storage.base import FetchedObject, IncomingFile, StoredObject
from imgbed.services.resilience import RetryPolicy, retry_async
from imgbed.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

INDEX_PREFIX = "/cfile"

# Ordered MIME prefix -> (bot method, multipart field).
SEND_METHODS: tuple[tuple[str, str, str], ...] = (
    ("image/", "sendPhoto", "photo"),
    ("video/", "sendVideo", "video"),
    ("audio/", "sendAudio", "audio"),
    ("application/pdf", "sendDocument", "document"),
)
DEFAULT_SEND_METHOD = ("sendDocument", "document")


def send_method_for(content_type: str | None) -> tuple[str, str]:
    lowered = (content_type or "").lower()
    for prefix, method, field in SEND_METHODS:
        if lowered.startswith(prefix):
            return method, field
    return DEFAULT_SEND_METHOD


def extract_file(payload: Any) -> dict[str, str] | None:
    # Pick the stored file out of a send* reply; photos come in several sizes.
    if not isinstance(payload, dict) or not payload.get("ok"):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    candidate: dict[str, Any] | None = None
    photos = result.get("photo")
    if isinstance(photos, list) and photos:
        candidate = max(
            (photo for photo in photos if isinstance(photo, dict)),
            key=lambda photo: photo.get("file_size") or 0,
            default=None,
        )
    else:
        for field in ("video", "document", "audio"):
            if isinstance(result.get(field), dict):
                candidate = result[field]
                break
    if not candidate or not candidate.get("file_id"):
        return None
    return {
        "file_id": str(candidate["file_id"]),
        "file_name": str(candidate.get("file_name") or candidate.get("file_unique_id") or ""),
    }


class TelegramStorageAdapter:
    name = "telegram"

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def ensure_configured(self) -> None:
        if not self._settings.tg_bot_token or not self._settings.tg_chat_id:
            raise ConfigurationError("TG_BOT_TOKEN or TG_CHAT_ID is not set")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per adapter for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._settings.ext_call_timeout_ms / 1000.0)
        return self._client

    def _bot_url(self, method: str) -> str:
        return f"{self._settings.tg_api_base.rstrip('/')}/bot{self._settings.tg_bot_token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self._settings.tg_api_base.rstrip('/')}/file/bot{self._settings.tg_bot_token}/{file_path}"

    async def _request(
        self,
        integration: str,
        func: Callable[[], Awaitable[httpx.Response]],
        *,
        max_attempts: int = 1,
    ) -> httpx.Response:
        policy = RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=max_attempts,
            backoff_ms=200,
        )
        start = time.monotonic()
        try:
            response = await retry_async(func, policy=policy)
        except (httpx.HTTPError, TimeoutError) as exc:
            record_external_call(
                integration=integration,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageError(f"Telegram request failed: {exc}") from exc
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.status_code < 400,
        )
        return response

    async def store(self, upload: IncomingFile, *, origin: str) -> StoredObject:
        method, field = send_method_for(upload.content_type)
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(
                self._bot_url(method),
                data={"chat_id": self._settings.tg_chat_id},
                files={field: (upload.filename or field, upload.data, upload.content_type or "application/octet-stream")},
            )

        response = await self._request("storage.telegram.send", _call)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        file_info = extract_file(payload)
        if file_info is None:
            description = payload.get("description") if isinstance(payload, dict) else None
            logger.warning("telegram_missing_file_id method=%s description=%s", method, description)
            raise StorageError("Telegram response is missing the file id", status_code=502)

        file_id = file_info["file_id"]
        message_id = (payload.get("result") or {}).get("message_id")
        display_name = upload.filename or file_info["file_name"] or f"{field}-{int(time.time() * 1000)}"
        logger.info("telegram_file_stored file_id=%s method=%s", file_id, method)
        prefix = self._settings.tg_public_prefix.rstrip("/")
        return StoredObject(
            reference=file_id,
            display_name=display_name,
            url=f"{origin.rstrip('/')}{prefix}/{file_id}",
            index_url=f"{INDEX_PREFIX}/{file_id}",
            message_id=message_id if isinstance(message_id, int) else None,
            chat_id=str(self._settings.tg_chat_id),
        )

    async def get_file_path(self, file_id: str) -> str:
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.get(self._bot_url("getFile"), params={"file_id": file_id})

        # getFile is idempotent, so allow one retry on transient failures.
        response = await self._request("storage.telegram.get_file", _call, max_attempts=2)
        try:
            payload = response.json()
        except ValueError as exc:
            raise StorageError("Telegram getFile returned invalid JSON") from exc
        file_path = None
        if isinstance(payload, dict) and payload.get("ok"):
            file_path = (payload.get("result") or {}).get("file_path")
        if not file_path:
            raise StorageError(f"Telegram getFile failed for {file_id}", status_code=502)
        return str(file_path)

    async def resolve_public_url(self, stored: StoredObject) -> str:
        return self._file_url(await self.get_file_path(stored.reference))

    async def retract(self, stored: StoredObject) -> None:
        if stored.message_id is None:
            logger.warning("telegram_retract_skipped file_id=%s reason=no_message_id", stored.reference)
            return
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(
                self._bot_url("deleteMessage"),
                data={"chat_id": stored.chat_id or self._settings.tg_chat_id, "message_id": stored.message_id},
            )

        response = await self._request("storage.telegram.delete", _call)
        if response.status_code >= 400:
            raise StorageError(f"Telegram deleteMessage failed with status {response.status_code}")
        logger.info("telegram_message_deleted file_id=%s message_id=%s", stored.reference, stored.message_id)

    async def fetch(self, file_id: str) -> FetchedObject:
        file_path = await self.get_file_path(file_id)
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.get(self._file_url(file_path))

        response = await self._request("storage.telegram.download", _call, max_attempts=2)
        if response.status_code >= 400:
            raise StorageError(f"Telegram download failed with status {response.status_code}", status_code=502)
        return FetchedObject(
            data=response.content,
            content_type=response.headers.get("content-type") or "application/octet-stream",
        )
