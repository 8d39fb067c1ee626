from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from imgbed.core.config import get_settings
from imgbed.core.errors import ConfigurationError, StorageError
from imgbed.providers.storage.base import FetchedObject, IncomingFile, StoredObject
from imgbed.services.resilience import RetryPolicy, retry_async
from imgbed.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

INDEX_PREFIX = "/rfile"


def object_key_for(upload: IncomingFile) -> str:
    # Uploads keep their client filename as the object key.
    name = (upload.filename or "").strip().rsplit("/", 1)[-1]
    return name or f"upload-{int(time.time() * 1000)}"


class R2StorageAdapter:
    name = "r2"

    def __init__(self, client: Any | None = None, *, bucket: str | None = None) -> None:
        self._settings = get_settings()
        self._client = client
        self._bucket = bucket or self._settings.r2_bucket

    def is_configured(self) -> bool:
        return bool(self._bucket) and (self._client is not None or bool(self._settings.r2_endpoint_url))

    def ensure_configured(self) -> None:
        if not self._bucket:
            raise ConfigurationError("R2_BUCKET is not set")
        if self._client is None and not self._settings.r2_endpoint_url:
            raise ConfigurationError("R2_ENDPOINT_URL is not set")

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        self._client = boto3.client(
            "s3",
            endpoint_url=self._settings.r2_endpoint_url,
            aws_access_key_id=self._settings.r2_access_key_id,
            aws_secret_access_key=self._settings.r2_secret_access_key,
            region_name=self._settings.r2_region,
        )
        return self._client

    def _policy(self, *, max_attempts: int = 1) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=max_attempts,
            backoff_ms=200,
        )

    async def _call(self, operation: str, *, max_attempts: int = 1, **request: Any) -> Any:
        client = self._get_client()
        method = getattr(client, operation)
        start = time.monotonic()
        try:
            async def _run() -> Any:
                return await asyncio.to_thread(method, **request)

            response = await retry_async(_run, policy=self._policy(max_attempts=max_attempts))
        except (BotoCoreError, ClientError, TimeoutError, OSError) as exc:
            record_external_call(
                integration=f"storage.r2.{operation}",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageError(f"R2 {operation} failed: {exc}") from exc
        record_external_call(
            integration=f"storage.r2.{operation}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return response

    async def store(self, upload: IncomingFile, *, origin: str) -> StoredObject:
        key = object_key_for(upload)
        await self._call(
            "put_object",
            Bucket=self._bucket,
            Key=key,
            Body=upload.data,
            ContentType=upload.content_type or "application/octet-stream",
            ContentLength=upload.size,
        )
        logger.info("r2_object_stored key=%s bytes=%s", key, upload.size)
        prefix = self._settings.r2_public_prefix.rstrip("/")
        return StoredObject(
            reference=key,
            display_name=key,
            url=f"{origin.rstrip('/')}{prefix}/{quote(key)}",
            index_url=f"{INDEX_PREFIX}/{key}",
        )

    async def resolve_public_url(self, stored: StoredObject) -> str:
        return stored.url

    async def retract(self, stored: StoredObject) -> None:
        await self.delete_object(stored.reference)

    async def delete_object(self, key: str) -> None:
        await self._call("delete_object", Bucket=self._bucket, Key=key)
        logger.info("r2_object_deleted key=%s", key)

    async def fetch(self, key: str) -> FetchedObject | None:
        try:
            response = await self._call("get_object", max_attempts=2, Bucket=self._bucket, Key=key)
        except StorageError as exc:
            cause = exc.__cause__
            if isinstance(cause, ClientError) and cause.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise
        body = response["Body"]
        data = await asyncio.to_thread(body.read)
        return FetchedObject(
            data=data,
            content_type=response.get("ContentType") or "application/octet-stream",
        )
