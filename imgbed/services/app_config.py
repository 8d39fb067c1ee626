from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.domain.models import AppConfig, QuotaConfig
from imgbed.persistence.db import dialect_insert


logger = logging.getLogger(__name__)

MODERATION_ENABLED_KEY = "moderation_enabled"

_ANONYMOUS_LIMIT_KEY = "anonymous_limit"
_USER_LIMIT_KEY = "user_limit"

_TRUE_VALUES = {"1", "true"}
_FALSE_VALUES = {"0", "false"}


@dataclass(frozen=True)
class QuotaLimits:
    # Per-role upload caps (anonymous lifetime, users daily); 0 means unlimited.
    anonymous: int = 1
    user: int = 15

    def as_dict(self) -> dict[str, int]:
        return {"anonymous": self.anonymous, "user": self.user}


DEFAULT_QUOTA_LIMITS = QuotaLimits()


def parse_boolean(value: str | None, fallback: bool) -> bool:
    # Accept 1/0 and true/false; anything else keeps the fallback.
    if value is None:
        return fallback
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return fallback


async def get_boolean_config(session: AsyncSession, key: str, fallback: bool = False) -> bool:
    if not key:
        return fallback
    result = await session.execute(select(AppConfig.value).where(AppConfig.key == key))
    return parse_boolean(result.scalar_one_or_none(), fallback)


async def set_boolean_config(session: AsyncSession, key: str, value: bool) -> bool:
    # Upsert in one statement so repeated toggles are idempotent.
    stored = "1" if value else "0"
    stmt = dialect_insert(session, AppConfig).values(key=key, value=stored)
    stmt = stmt.on_conflict_do_update(index_elements=[AppConfig.key], set_={"value": stored})
    await session.execute(stmt)
    await session.commit()
    logger.info("boolean_config_updated key=%s value=%s", key, stored)
    return value


async def is_moderation_enabled(session: AsyncSession) -> bool:
    return await get_boolean_config(session, MODERATION_ENABLED_KEY, False)


def _valid_limit(value: object) -> int | None:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


async def get_quota_limits(session: AsyncSession) -> QuotaLimits:
    # Overlay stored limits on the defaults, ignoring invalid rows.
    anonymous = DEFAULT_QUOTA_LIMITS.anonymous
    user = DEFAULT_QUOTA_LIMITS.user
    result = await session.execute(select(QuotaConfig.key, QuotaConfig.value))
    for key, value in result.all():
        limit = _valid_limit(value)
        if limit is None:
            continue
        if key == _ANONYMOUS_LIMIT_KEY:
            anonymous = limit
        elif key == _USER_LIMIT_KEY:
            user = limit
    return QuotaLimits(anonymous=anonymous, user=user)


async def set_quota_limits(session: AsyncSession, *, anonymous: int, user: int) -> QuotaLimits:
    anonymous_limit = _valid_limit(anonymous)
    user_limit = _valid_limit(user)
    limits = QuotaLimits(
        anonymous=DEFAULT_QUOTA_LIMITS.anonymous if anonymous_limit is None else anonymous_limit,
        user=DEFAULT_QUOTA_LIMITS.user if user_limit is None else user_limit,
    )
    for key, value in ((_ANONYMOUS_LIMIT_KEY, limits.anonymous), (_USER_LIMIT_KEY, limits.user)):
        stmt = dialect_insert(session, QuotaConfig).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=[QuotaConfig.key], set_={"value": value})
        await session.execute(stmt)
    await session.commit()
    logger.info("quota_limits_updated anonymous=%s user=%s", limits.anonymous, limits.user)
    return limits
