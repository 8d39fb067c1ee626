from __future__ import annotations

import asyncio

from imgbed.persistence.db import engine
from imgbed.persistence.schema import ensure_schema


async def init() -> None:
    # Convenience for local SQLite setups; production uses alembic upgrade head.
    await ensure_schema()
    await engine.dispose()
    print("schema_ready=true")


if __name__ == "__main__":
    asyncio.run(init())
