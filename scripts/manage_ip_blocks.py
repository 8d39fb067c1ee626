from __future__ import annotations

import argparse
import asyncio
import sys

from imgbed.persistence.db import SessionLocal
from imgbed.services.ip_blocks import (
    MANUAL_BLOCK_REASON,
    expiry_from_hours,
    list_blocks,
    remove_block,
    upsert_block,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect or change upload IP blocks")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="Show every block, newest first")
    add = sub.add_parser("add", help="Block an IP")
    add.add_argument("ip")
    add.add_argument("--reason", default=MANUAL_BLOCK_REASON)
    add.add_argument("--hours", type=float, default=0, help="0 blocks permanently")
    remove = sub.add_parser("remove", help="Lift a block")
    remove.add_argument("ip")
    return parser


async def _run(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        if args.command == "add":
            await upsert_block(session, args.ip, reason=args.reason, expires_at=expiry_from_hours(args.hours))
        elif args.command == "remove":
            await remove_block(session, args.ip)
        entries = await list_blocks(session)
    print("ip\treason\tblocked_at\texpires_at")
    for entry in entries:
        row = entry.as_dict()
        print(f"{row['ip']}\t{row['reason']}\t{row['blockedAt']}\t{row['expiresAt'] or 'never'}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(_run(_build_parser().parse_args())))
