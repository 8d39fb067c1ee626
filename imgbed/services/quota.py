from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.core.config import get_settings
from imgbed.domain.models import UploadQuota, utc_now
from imgbed.persistence.db import dialect_insert
from imgbed.services.app_config import QuotaLimits, get_quota_limits


logger = logging.getLogger(__name__)

SCOPE_DAILY = "daily"
SCOPE_LIFETIME = "lifetime"
LIFETIME_DAY = "all"

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLE_ANONYMOUS = "anonymous"

_RECENT_ROW_LIMIT = 60
_RECENT_DAYS = 14


def display_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().display_timezone)


def day_key(now: datetime) -> str:
    # Quota days roll over at local midnight in the display timezone.
    return now.astimezone(display_zone()).strftime("%Y-%m-%d")


def normalize_role(role: str | None) -> str:
    value = (role or "").strip().lower()
    if value in {ROLE_ADMIN, ROLE_USER}:
        return value
    return ROLE_ANONYMOUS


@dataclass(frozen=True)
class QuotaSubject:
    # Counter key and limit that apply to one caller.
    identity: str
    scope: str
    day: str
    role: str
    limit: int


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    subject: QuotaSubject | None
    used: int


def resolve_subject(
    *,
    role: str,
    user_id: str | None,
    client_ip: str,
    limits: QuotaLimits,
    today: str,
) -> QuotaSubject | None:
    # Admins are never counted; anonymous callers get a lifetime allowance per IP.
    if role == ROLE_ADMIN:
        return None
    if role == ROLE_USER:
        identifier = (user_id or "").strip() or client_ip or "unknown"
        return QuotaSubject(
            identity=f"user:{identifier}",
            scope=SCOPE_DAILY,
            day=today,
            role=role,
            limit=limits.user,
        )
    return QuotaSubject(
        identity=f"anon:{client_ip or 'unknown'}",
        scope=SCOPE_LIFETIME,
        day=LIFETIME_DAY,
        role=ROLE_ANONYMOUS,
        limit=limits.anonymous,
    )


async def get_usage(session: AsyncSession, subject: QuotaSubject) -> int:
    stmt = select(UploadQuota.count).where(
        UploadQuota.identity == subject.identity,
        UploadQuota.scope == subject.scope,
        UploadQuota.day == subject.day,
    )
    return int((await session.execute(stmt)).scalar_one_or_none() or 0)


async def increment_usage(session: AsyncSession, subject: QuotaSubject) -> None:
    # Atomic increment so concurrent uploads never lose a count.
    now = utc_now()
    stmt = dialect_insert(session, UploadQuota).values(
        identity=subject.identity,
        scope=subject.scope,
        day=subject.day,
        count=1,
        role=subject.role,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[UploadQuota.identity, UploadQuota.scope, UploadQuota.day],
        set_={"count": UploadQuota.count + 1, "updated_at": now},
    )
    await session.execute(stmt)
    await session.commit()


class QuotaService:
    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic rollover tests.
        self._time_provider = time_provider or utc_now

    async def check(
        self,
        session: AsyncSession,
        *,
        role: str,
        user_id: str | None,
        client_ip: str,
    ) -> QuotaCheck:
        limits = await get_quota_limits(session)
        subject = resolve_subject(
            role=normalize_role(role),
            user_id=user_id,
            client_ip=client_ip,
            limits=limits,
            today=day_key(self._time_provider()),
        )
        if subject is None:
            return QuotaCheck(allowed=True, subject=None, used=0)
        used = await get_usage(session, subject)
        # A limit of 0 disables the cap for that role.
        allowed = subject.limit == 0 or used < subject.limit
        if not allowed:
            logger.info(
                "upload_quota_exhausted identity=%s scope=%s used=%s limit=%s",
                subject.identity,
                subject.scope,
                used,
                subject.limit,
            )
        return QuotaCheck(allowed=allowed, subject=subject, used=used)

    async def consume(self, session: AsyncSession, subject: QuotaSubject | None) -> None:
        if subject is None:
            return
        await increment_usage(session, subject)


async def usage_snapshot(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    # Summarize limits, today's usage by role and the recent daily series.
    limits = await get_quota_limits(session)
    today = day_key(now or utc_now())

    lifetime_stmt = select(func.sum(UploadQuota.count)).where(UploadQuota.scope == SCOPE_LIFETIME)
    lifetime_anonymous = int((await session.execute(lifetime_stmt)).scalar_one_or_none() or 0)

    today_stmt = (
        select(UploadQuota.role, func.sum(UploadQuota.count))
        .where(UploadQuota.scope == SCOPE_DAILY, UploadQuota.day == today)
        .group_by(UploadQuota.role)
    )
    summary = {"day": today, "user": 0, "admin": 0, "anonymous": 0, "total": 0}
    for role, total in (await session.execute(today_stmt)).all():
        count = int(total or 0)
        if role == ROLE_USER:
            summary["user"] += count
        elif role == ROLE_ADMIN:
            summary["admin"] += count
        else:
            summary["anonymous"] += count
        summary["total"] += count

    recent_stmt = (
        select(UploadQuota.day, UploadQuota.role, func.sum(UploadQuota.count))
        .where(UploadQuota.scope == SCOPE_DAILY)
        .group_by(UploadQuota.day, UploadQuota.role)
        .order_by(UploadQuota.day.desc())
        .limit(_RECENT_ROW_LIMIT)
    )
    by_day: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
    for day, role, total in (await session.execute(recent_stmt)).all():
        if not day:
            continue
        by_day.setdefault(day.strip(), []).append({"role": role or "unknown", "total": int(total or 0)})
    recent = [
        {"day": day, "records": records, "total": sum(item["total"] for item in records)}
        for day, records in sorted(by_day.items(), reverse=True)[:_RECENT_DAYS]
    ]

    return {
        "limits": limits.as_dict(),
        "today": summary,
        "lifetimeAnonymous": lifetime_anonymous,
        "recent": recent,
    }
