from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.core.config import get_settings
from imgbed.domain.models import IpBlock, as_utc, utc_now
from imgbed.persistence.db import SessionLocal, dialect_insert
from imgbed.services.upload_logs import count_violations_since


logger = logging.getLogger(__name__)

MANUAL_BLOCK_REASON = "manual block"


@dataclass(frozen=True)
class BlockEntry:
    ip: str
    reason: str
    blocked_at: datetime | None
    expires_at: datetime | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "reason": self.reason,
            "blockedAt": self.blocked_at.isoformat() if self.blocked_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


def _to_entry(row: IpBlock) -> BlockEntry:
    return BlockEntry(
        ip=row.ip,
        reason=row.reason or "",
        blocked_at=as_utc(row.blocked_at),
        expires_at=as_utc(row.expires_at),
    )


def expiry_from_hours(hours: float | None, *, now: datetime | None = None) -> datetime | None:
    # Zero, negative or missing durations mean a permanent block.
    if hours is None or hours <= 0:
        return None
    return (now or utc_now()) + timedelta(hours=hours)


async def get_active_block(
    session: AsyncSession,
    ip: str,
    *,
    now: datetime | None = None,
) -> BlockEntry | None:
    # Return the live block for an IP; expired rows are deleted on sight.
    if not ip:
        return None
    result = await session.execute(select(IpBlock).where(IpBlock.ip == ip))
    row = result.scalar_one_or_none()
    if row is None:
        return None
    entry = _to_entry(row)
    if entry.expires_at is not None and entry.expires_at < (now or utc_now()):
        await remove_block(session, ip)
        logger.info("ip_block_expired ip=%s", ip)
        return None
    return entry


async def upsert_block(
    session: AsyncSession,
    ip: str,
    *,
    reason: str = "",
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> None:
    # Single-statement upsert keeps at most one row per IP under concurrency.
    if not ip:
        return
    blocked_at = now or utc_now()
    stmt = dialect_insert(session, IpBlock).values(
        ip=ip, reason=reason, blocked_at=blocked_at, expires_at=expires_at
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[IpBlock.ip],
        set_={"reason": reason, "blocked_at": blocked_at, "expires_at": expires_at},
    )
    await session.execute(stmt)
    await session.commit()
    logger.info("ip_block_upserted ip=%s expires_at=%s", ip, expires_at)


async def remove_block(session: AsyncSession, ip: str) -> None:
    if not ip:
        return
    await session.execute(delete(IpBlock).where(IpBlock.ip == ip))
    await session.commit()


async def list_blocks(session: AsyncSession) -> list[BlockEntry]:
    result = await session.execute(select(IpBlock).order_by(IpBlock.blocked_at.desc()))
    return [_to_entry(row) for row in result.scalars().all()]


def auto_block_reason(violations: int, window_hours: int) -> str:
    return f"auto-block: {violations} violating uploads in {window_hours}h"


async def maybe_auto_block(
    ip: str,
    *,
    threshold: int | None = None,
    window_hours: int | None = None,
    time_provider: Callable[[], datetime] | None = None,
) -> bool:
    # Escalate repeat offenders to a permanent block; failures are logged only.
    if not ip:
        return False
    settings = get_settings()
    threshold = max(1, threshold if threshold is not None else settings.auto_block_threshold)
    window_hours = max(1, window_hours if window_hours is not None else settings.auto_block_window_hours)
    now = (time_provider or utc_now)()
    async with SessionLocal() as session:
        try:
            violations = await count_violations_since(
                session, ip=ip, since=now - timedelta(hours=window_hours)
            )
            if violations < threshold:
                return False
            await upsert_block(
                session,
                ip,
                reason=auto_block_reason(violations, window_hours),
                expires_at=None,
                now=now,
            )
        except Exception as exc:  # noqa: BLE001 - escalation must not mask the upload response
            await session.rollback()
            logger.warning("ip_auto_block_failed ip=%s", ip, exc_info=exc)
            return False
    logger.warning("ip_auto_blocked ip=%s violations=%s window_hours=%s", ip, violations, window_hours)
    return True


async def prune_expired_blocks(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Manual sweep for expired rows whose IPs never came back to trigger lazy expiry.
    cutoff = now or utc_now()
    result = await session.execute(
        delete(IpBlock).where(IpBlock.expires_at.is_not(None), IpBlock.expires_at < cutoff)
    )
    await session.commit()
    return int(result.rowcount or 0)
