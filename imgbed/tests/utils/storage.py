from __future__ import annotations

import io
from typing import Any

import httpx
from botocore.exceptions import ClientError

from imgbed.providers.moderation.client import ModerationClient
from imgbed.providers.moderation.rating_api import GenericRatingProvider
from imgbed.providers.storage.r2 import R2StorageAdapter
from imgbed.providers.storage.telegram import TelegramStorageAdapter


JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"
RATING_ENDPOINT = "https://rating.test/api"


class DummyS3Client:
    # Records calls in place of a boto3 S3 client.
    def __init__(self, *, fail_put: bool = False, fail_delete: bool = False) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.deleted: list[str] = []
        self._fail_put = fail_put
        self._fail_delete = fail_delete

    def put_object(self, **kwargs: Any) -> dict:
        self.calls.append("put_object")
        if self._fail_put:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "PutObject")
        self.objects[kwargs["Key"]] = {"Body": kwargs["Body"], "ContentType": kwargs.get("ContentType")}
        return {"ETag": '"etag"'}

    def delete_object(self, **kwargs: Any) -> dict:
        self.calls.append("delete_object")
        if self._fail_delete:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObject")
        self.deleted.append(kwargs["Key"])
        self.objects.pop(kwargs["Key"], None)
        return {}

    def get_object(self, **kwargs: Any) -> dict:
        self.calls.append("get_object")
        stored = self.objects.get(kwargs["Key"])
        if stored is None:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(stored["Body"]), "ContentType": stored["ContentType"]}


def make_r2_adapter(client: DummyS3Client | None = None) -> tuple[R2StorageAdapter, DummyS3Client]:
    s3 = client or DummyS3Client()
    return R2StorageAdapter(client=s3, bucket="test-bucket"), s3


def make_rating_client(payload: Any, *, status_code: int = 200) -> tuple[ModerationClient, list[str]]:
    # Moderation client whose upstream always answers with the given JSON.
    seen: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(status_code, json=payload)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    return ModerationClient(GenericRatingProvider(RATING_ENDPOINT, client=http_client)), seen


def make_telegram_adapter(handler) -> TelegramStorageAdapter:
    return TelegramStorageAdapter(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
