from __future__ import annotations

import argparse
import asyncio
import sys

from edugate.persistence.db import SessionLocal, create_schema, engine
from edugate.services.catalog import seed_tools
from edugate.services.permissions import ensure_permission_catalog


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the tool catalog and permission catalog")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables first (local development only)",
    )
    return parser


async def _seed(args: argparse.Namespace) -> int:
    if args.create_tables:
        await create_schema(engine)
    async with SessionLocal() as session:
        tools_created = await seed_tools(session)
        # Commits the staged tool rows together with the permission catalog.
        permissions_created = await ensure_permission_catalog(session)
    await engine.dispose()
    print(f"tools created: {tools_created}")
    print(f"permissions created: {permissions_created}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_seed(args))
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_catalog failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
