from __future__ import annotations

import pytest

from imgbed.persistence.db import SessionLocal
from imgbed.services.assets import delete_assets, insert_asset, list_assets, resolve_r2_key
from imgbed.services.tags import (
    determine_kind_tag,
    list_tags,
    normalise_tags,
    normalize_asset_url,
    register_tag,
    update_asset_tags,
)


def test_kind_tag_prefers_mime_then_extension() -> None:
    assert determine_kind_tag("image/png", "clip.mp4") == "image"
    assert determine_kind_tag("", "clip.MP4") == "video"
    assert determine_kind_tag(None, "scan.heic") == "image"
    assert determine_kind_tag("application/zip", "bundle.zip") == "file"


def test_normalise_tags_dedupes_and_appends_kind() -> None:
    tags, storage = normalise_tags(" travel, all ,travel,  ," + "x" * 60, "image")
    assert tags == ["travel", "x" * 48, "image"]
    assert storage == f",travel,{'x' * 48},image,"
    assert normalise_tags("", None) == ([], "")


def test_normalize_asset_url_and_r2_key() -> None:
    assert normalize_asset_url("https://img.example/api/rfile/a.png") == "/rfile/a.png"
    assert normalize_asset_url("rfile/a.png") == "/rfile/a.png"
    assert resolve_r2_key("/api/rfile/dir/a.png") == "dir/a.png"
    assert resolve_r2_key("/cfile/abc") == ""


async def _insert(url: str, tags: str = "") -> None:
    async with SessionLocal() as session:
        await insert_asset(
            session, url=url, storage="r2", referer="", ip="1.1.1.1", rating=0, time="now", tags=tags
        )


@pytest.mark.asyncio
async def test_reupload_bumps_total() -> None:
    await _insert("/rfile/a.png")
    await _insert("/rfile/a.png")
    async with SessionLocal() as session:
        rows, total = await list_assets(session, query="a.png")
    assert total == 1
    assert rows[0].total == 2


@pytest.mark.asyncio
async def test_update_tags_keeps_kind_and_lists_all_tags() -> None:
    await _insert("/rfile/a.png", tags=",image,")
    async with SessionLocal() as session:
        updated = await update_asset_tags(session, "https://img.example/api/rfile/a.png", ["pets", "all", "pets"])
        assert updated == (["pets", "image"], ",pets,image,")
        assert await update_asset_tags(session, "/rfile/missing.png", ["x"]) is None
        assert await register_tag(session, "travel") == "travel"
        assert await register_tag(session, "video") is None
        assert await list_tags(session) == ["file", "image", "pets", "travel", "video"]


@pytest.mark.asyncio
async def test_delete_assets_reports_missing_and_removes_objects() -> None:
    await _insert("/rfile/a.png")
    removed: list[str] = []

    async def deleter(key: str) -> None:
        removed.append(key)

    async with SessionLocal() as session:
        outcome = await delete_assets(session, ["/rfile/a.png", "/rfile/ghost.png"], object_deleter=deleter)
    assert outcome.deleted == ["/rfile/a.png"]
    assert [item["url"] for item in outcome.failed] == ["/rfile/ghost.png"]
    assert outcome.success is False
    assert removed == ["a.png"]
