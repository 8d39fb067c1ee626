from __future__ import annotations

from datetime import timedelta

import pytest

from imgbed.domain.models import utc_now
from imgbed.persistence.db import SessionLocal
from imgbed.services import upload_logs
from imgbed.services.upload_logs import (
    STATUS_BLOCKED,
    STATUS_ERROR,
    STATUS_SUCCESS,
    UploadLogFilters,
    clamp_page,
    clamp_page_size,
    list_upload_logs,
    log_stats,
    recent_daily,
    record_upload_log,
    sanitize_like,
    serialize_upload_log,
    top_ips,
)
from imgbed.tests.utils.records import FailingCommitSession


def test_clamp_helpers() -> None:
    assert clamp_page("3") == 3
    assert clamp_page("-1") == 1
    assert clamp_page("abc") == 1
    assert clamp_page_size("2") == 5
    assert clamp_page_size("500") == 100
    assert clamp_page_size(None) == 20
    assert sanitize_like("50%_off") == "%50off%"


async def _seed() -> None:
    now = utc_now()
    await record_upload_log(file_name="cat.jpg", ip="10.0.0.1", status=STATUS_SUCCESS, created_at=now - timedelta(hours=3))
    await record_upload_log(
        file_name="bad.jpg",
        ip="10.0.0.2",
        rating=4,
        compliant=False,
        status=STATUS_BLOCKED,
        message="moderation rejected",
        created_at=now - timedelta(hours=2),
    )
    await record_upload_log(
        file_name="worse.png",
        ip="10.0.0.2",
        compliant=False,
        status=STATUS_BLOCKED,
        message="spam",
        created_at=now - timedelta(hours=1),
    )
    await record_upload_log(file_name="unknown", ip="10.0.0.3", status=STATUS_ERROR, message="no valid file", created_at=now)


@pytest.mark.asyncio
async def test_record_and_list_newest_first() -> None:
    await _seed()
    async with SessionLocal() as session:
        rows, total = await list_upload_logs(session, filters=UploadLogFilters(), page=1, page_size=5)
    assert total == 4
    assert [row.file_name for row in rows] == ["unknown", "worse.png", "bad.jpg", "cat.jpg"]
    payload = serialize_upload_log(rows[2])
    assert payload["fileName"] == "bad.jpg"
    assert payload["compliant"] is False
    assert payload["rating"] == 4


@pytest.mark.asyncio
async def test_list_filters_combine() -> None:
    await _seed()
    async with SessionLocal() as session:
        rows, total = await list_upload_logs(
            session,
            filters=UploadLogFilters(ip="10.0.0.2", compliant=False, search="moderation"),
        )
        assert total == 1
        assert rows[0].file_name == "bad.jpg"

        rows, total = await list_upload_logs(session, filters=UploadLogFilters(status=STATUS_ERROR))
        assert total == 1

        since = utc_now() - timedelta(minutes=90)
        rows, total = await list_upload_logs(session, filters=UploadLogFilters(start=since))
        assert {row.file_name for row in rows} == {"worse.png", "unknown"}


@pytest.mark.asyncio
async def test_stats_recent_and_top_ips() -> None:
    await _seed()
    async with SessionLocal() as session:
        stats = await log_stats(session)
        recent = await recent_daily(session)
        ranking = await top_ips(session)
    assert stats == {"total": 4, "violations": 2, "blocked": 2, "failed": 1}
    assert sum(day["total"] for day in recent) == 4
    assert ranking[0] == {"ip": "10.0.0.2", "total": 2, "violations": 2}



@pytest.mark.asyncio
async def test_record_upload_log_swallows_commit_failure(monkeypatch) -> None:
    failing = FailingCommitSession()
    monkeypatch.setattr(upload_logs, "SessionLocal", lambda: failing)

    written = await record_upload_log(file_name="cat.jpg", ip="10.0.0.9", status=STATUS_SUCCESS)

    assert written is False
    assert failing.rolled_back is True
    assert [entry.file_name for entry in failing.added] == ["cat.jpg"]
