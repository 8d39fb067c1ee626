from __future__ import annotations

import asyncio

from imgbed.persistence.db import SessionLocal
from imgbed.services.ip_blocks import prune_expired_blocks


async def prune() -> None:
    async with SessionLocal() as session:
        deleted = await prune_expired_blocks(session)
        print(f"pruned_ip_blocks={deleted}")


if __name__ == "__main__":
    asyncio.run(prune())
