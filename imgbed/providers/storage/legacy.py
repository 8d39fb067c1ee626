from __future__ import annotations

import logging
import time

import httpx

from imgbed.core.config import get_settings
from imgbed.core.errors import ConfigurationError, StorageError
from imgbed.providers.storage.base import IncomingFile, StoredObject
from imgbed.services.resilience import RetryPolicy, retry_async
from imgbed.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class LegacyHostAdapter:
    """Telegraph-style image host: ``POST /upload`` answers ``[{"src": ...}]``.

    The host offers no delete API, so retraction only records the attempt.
    """

    name = "legacy"

    def __init__(self, client: httpx.AsyncClient | None = None, *, base_url: str | None = None) -> None:
        self._settings = get_settings()
        self._client = client
        self._base_url = (base_url or self._settings.legacy_host_url or "").rstrip("/")

    def ensure_configured(self) -> None:
        if not self._base_url:
            raise ConfigurationError("LEGACY_HOST_URL is not set")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._client = httpx.AsyncClient(timeout=self._settings.ext_call_timeout_ms / 1000.0)
        return self._client

    async def store(self, upload: IncomingFile, *, origin: str) -> StoredObject:
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(
                f"{self._base_url}/upload",
                files={"file": (upload.filename or "file", upload.data, upload.content_type or "application/octet-stream")},
            )

        policy = RetryPolicy(timeout_ms=self._settings.ext_call_timeout_ms, max_attempts=1, backoff_ms=200)
        start = time.monotonic()
        try:
            response = await retry_async(_call, policy=policy)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, TimeoutError, ValueError) as exc:
            record_external_call(
                integration="storage.legacy.upload",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageError(f"Legacy host upload failed: {exc}") from exc
        record_external_call(
            integration="storage.legacy.upload",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )

        src = None
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            src = payload[0].get("src")
        if not src:
            raise StorageError("Legacy host response is missing src", status_code=502)
        src = str(src)
        url = src if src.startswith(("http://", "https://")) else f"{self._base_url}/{src.lstrip('/')}"
        logger.info("legacy_file_stored src=%s", src)
        return StoredObject(
            reference=src,
            display_name=upload.filename or src.rsplit("/", 1)[-1],
            url=url,
            index_url=url,
        )

    async def resolve_public_url(self, stored: StoredObject) -> str:
        return stored.url

    async def retract(self, stored: StoredObject) -> None:
        logger.warning("legacy_retract_unsupported src=%s", stored.reference)
