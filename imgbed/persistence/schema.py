from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from imgbed.domain.models import Base
from imgbed.persistence.db import engine as default_engine


logger = logging.getLogger(__name__)


async def ensure_schema(engine: AsyncEngine | None = None) -> None:
    # Create any missing tables once at startup; create_all is idempotent.
    target = engine or default_engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("schema_ensured tables=%s", ",".join(sorted(Base.metadata.tables)))


async def drop_schema(engine: AsyncEngine | None = None) -> None:
    # Used by tests to reset state between cases.
    target = engine or default_engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
