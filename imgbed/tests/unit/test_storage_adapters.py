from __future__ import annotations

import httpx
import pytest

from imgbed.core.config import get_settings
from imgbed.core.errors import ConfigurationError, StorageError
from imgbed.providers.storage.base import IncomingFile
from imgbed.providers.storage.legacy import LegacyHostAdapter
from imgbed.providers.storage.r2 import R2StorageAdapter, object_key_for
from imgbed.providers.storage.telegram import extract_file, send_method_for
from imgbed.tests.utils.storage import JPEG_BYTES, DummyS3Client, make_r2_adapter, make_telegram_adapter


JPEG = IncomingFile(filename="cat.jpg", content_type="image/jpeg", data=JPEG_BYTES)


def _telegram_env(monkeypatch) -> None:
    monkeypatch.setenv("TG_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TG_CHAT_ID", "-10042")
    get_settings.cache_clear()


def test_object_key_falls_back_when_filename_missing() -> None:
    assert object_key_for(JPEG) == "cat.jpg"
    assert object_key_for(IncomingFile(filename="", content_type="", data=b"x")).startswith("upload-")


def test_r2_requires_bucket() -> None:
    with pytest.raises(ConfigurationError):
        R2StorageAdapter(client=DummyS3Client(), bucket=None).ensure_configured()


@pytest.mark.asyncio
async def test_r2_store_fetch_and_retract() -> None:
    adapter, s3 = make_r2_adapter()
    stored = await adapter.store(JPEG, origin="https://img.example")
    assert stored.url == "https://img.example/api/rfile/cat.jpg"
    assert stored.index_url == "/rfile/cat.jpg"
    assert s3.objects["cat.jpg"]["ContentType"] == "image/jpeg"

    fetched = await adapter.fetch("cat.jpg")
    assert fetched is not None
    assert fetched.data == JPEG_BYTES
    assert await adapter.fetch("missing.jpg") is None

    await adapter.retract(stored)
    assert s3.deleted == ["cat.jpg"]


@pytest.mark.asyncio
async def test_r2_put_failure_raises_storage_error() -> None:
    adapter, _s3 = make_r2_adapter(DummyS3Client(fail_put=True))
    with pytest.raises(StorageError):
        await adapter.store(JPEG, origin="https://img.example")


def test_send_method_mapping() -> None:
    assert send_method_for("image/png") == ("sendPhoto", "photo")
    assert send_method_for("video/mp4") == ("sendVideo", "video")
    assert send_method_for("audio/mpeg") == ("sendAudio", "audio")
    assert send_method_for("application/pdf") == ("sendDocument", "document")
    assert send_method_for("application/zip") == ("sendDocument", "document")


def test_extract_file_picks_largest_photo() -> None:
    payload = {
        "ok": True,
        "result": {
            "message_id": 7,
            "photo": [
                {"file_id": "small", "file_unique_id": "s", "file_size": 10},
                {"file_id": "large", "file_unique_id": "l", "file_size": 900},
            ],
        },
    }
    assert extract_file(payload) == {"file_id": "large", "file_name": "l"}
    assert extract_file({"ok": False, "description": "bad"}) is None
    assert extract_file({"ok": True, "result": {"message_id": 1}}) is None


@pytest.mark.asyncio
async def test_telegram_store_and_resolve(monkeypatch) -> None:
    _telegram_env(monkeypatch)
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path.endswith("/sendPhoto"):
            return httpx.Response(
                200,
                json={"ok": True, "result": {"message_id": 9, "photo": [{"file_id": "F1", "file_size": 5}]}},
            )
        if request.url.path.endswith("/getFile"):
            return httpx.Response(200, json={"ok": True, "result": {"file_path": "photos/file_1.jpg"}})
        return httpx.Response(404, json={"ok": False})

    adapter = make_telegram_adapter(handler)
    stored = await adapter.store(JPEG, origin="https://img.example")
    assert stored.reference == "F1"
    assert stored.url == "https://img.example/api/cfile/F1"
    assert stored.index_url == "/cfile/F1"
    assert stored.message_id == 9
    assert stored.chat_id == "-10042"
    assert stored.display_name == "cat.jpg"

    public_url = await adapter.resolve_public_url(stored)
    assert public_url == "https://api.telegram.org/file/bot123:abc/photos/file_1.jpg"
    assert seen == ["/bot123:abc/sendPhoto", "/bot123:abc/getFile"]


@pytest.mark.asyncio
async def test_telegram_missing_file_id_is_bad_gateway(monkeypatch) -> None:
    _telegram_env(monkeypatch)
    adapter = make_telegram_adapter(lambda request: httpx.Response(200, json={"ok": True, "result": {"message_id": 3}}))
    with pytest.raises(StorageError) as excinfo:
        await adapter.store(JPEG, origin="https://img.example")
    assert excinfo.value.status_code == 502


def test_telegram_requires_credentials(monkeypatch) -> None:
    monkeypatch.delenv("TG_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TG_CHAT_ID", raising=False)
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        make_telegram_adapter(lambda request: httpx.Response(200)).ensure_configured()


@pytest.mark.asyncio
async def test_legacy_host_upload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/upload"
        return httpx.Response(200, json=[{"src": "/file/abc.jpg"}])

    adapter = LegacyHostAdapter(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="https://legacy.example",
    )
    adapter.ensure_configured()
    stored = await adapter.store(JPEG, origin="https://img.example")
    assert stored.url == "https://legacy.example/file/abc.jpg"
    assert stored.reference == "/file/abc.jpg"
