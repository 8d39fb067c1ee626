from __future__ import annotations

from datetime import timedelta

import pytest

from imgbed.domain.models import utc_now
from imgbed.persistence.db import SessionLocal
from imgbed.services.ip_blocks import (
    auto_block_reason,
    expiry_from_hours,
    get_active_block,
    list_blocks,
    maybe_auto_block,
    prune_expired_blocks,
    remove_block,
    upsert_block,
)
from imgbed.services.upload_logs import STATUS_BLOCKED, record_upload_log


def test_expiry_from_hours() -> None:
    now = utc_now()
    assert expiry_from_hours(None, now=now) is None
    assert expiry_from_hours(0, now=now) is None
    assert expiry_from_hours(-2, now=now) is None
    assert expiry_from_hours(1.5, now=now) == now + timedelta(minutes=90)


@pytest.mark.asyncio
async def test_permanent_block_stays_active() -> None:
    async with SessionLocal() as session:
        await upsert_block(session, "198.51.100.4", reason="spam", expires_at=None)
        entry = await get_active_block(session, "198.51.100.4", now=utc_now() + timedelta(days=3650))
    assert entry is not None
    assert entry.reason == "spam"
    assert entry.expires_at is None


@pytest.mark.asyncio
async def test_expired_block_is_removed_lazily() -> None:
    now = utc_now()
    async with SessionLocal() as session:
        await upsert_block(session, "198.51.100.5", reason="temp", expires_at=now + timedelta(hours=1), now=now)
        assert await get_active_block(session, "198.51.100.5", now=now + timedelta(minutes=59)) is not None
        assert await get_active_block(session, "198.51.100.5", now=now + timedelta(hours=2)) is None
        assert await list_blocks(session) == []


@pytest.mark.asyncio
async def test_upsert_keeps_one_row_per_ip_and_lists_newest_first() -> None:
    now = utc_now()
    async with SessionLocal() as session:
        await upsert_block(session, "198.51.100.6", reason="first", now=now - timedelta(hours=2))
        await upsert_block(session, "198.51.100.7", reason="other", now=now - timedelta(hours=1))
        await upsert_block(session, "198.51.100.6", reason="second", now=now)
        entries = await list_blocks(session)
    assert [entry.ip for entry in entries] == ["198.51.100.6", "198.51.100.7"]
    assert entries[0].reason == "second"
    assert entries[0].as_dict()["expiresAt"] is None


@pytest.mark.asyncio
async def test_remove_block_is_idempotent() -> None:
    async with SessionLocal() as session:
        await upsert_block(session, "198.51.100.8", reason="x")
        await remove_block(session, "198.51.100.8")
        await remove_block(session, "198.51.100.8")
        assert await get_active_block(session, "198.51.100.8") is None


@pytest.mark.asyncio
async def test_auto_block_after_threshold_violations() -> None:
    ip = "203.0.113.50"
    for _ in range(2):
        await record_upload_log(ip=ip, status=STATUS_BLOCKED, compliant=False, message="moderation rejected")
    assert await maybe_auto_block(ip, threshold=3, window_hours=12) is False

    await record_upload_log(ip=ip, status=STATUS_BLOCKED, compliant=False, message="moderation rejected")
    assert await maybe_auto_block(ip, threshold=3, window_hours=12) is True

    async with SessionLocal() as session:
        entry = await get_active_block(session, ip)
    assert entry is not None
    assert entry.expires_at is None
    assert entry.reason == auto_block_reason(3, 12)


@pytest.mark.asyncio
async def test_auto_block_ignores_violations_outside_window() -> None:
    ip = "203.0.113.51"
    stale = utc_now() - timedelta(hours=13)
    for _ in range(3):
        await record_upload_log(ip=ip, status=STATUS_BLOCKED, compliant=False, created_at=stale)
    assert await maybe_auto_block(ip, threshold=3, window_hours=12) is False


@pytest.mark.asyncio
async def test_prune_expired_blocks_keeps_permanent_rows() -> None:
    now = utc_now()
    async with SessionLocal() as session:
        await upsert_block(session, "192.0.2.1", reason="old", expires_at=now - timedelta(hours=1), now=now)
        await upsert_block(session, "192.0.2.2", reason="forever", expires_at=None, now=now)
        assert await prune_expired_blocks(session, now=now) == 1
        assert [entry.ip for entry in await list_blocks(session)] == ["192.0.2.2"]
