from __future__ import annotations

import argparse
import asyncio
import sys

from edugate.persistence.db import SessionLocal, engine
from edugate.services.catalog import TIERS
from edugate.services.entitlements import change_tier, sync_tool_access_for_tier


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Change a school's subscription tier")
    parser.add_argument("--tenant", required=True, help="School identifier")
    parser.add_argument("--tier", required=True, choices=TIERS, help="Target tier")
    parser.add_argument(
        "--sync-only",
        action="store_true",
        help="Only re-run tool access sync for the tier, leaving limits untouched",
    )
    return parser


async def _apply(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        if args.sync_only:
            result = await sync_tool_access_for_tier(session, args.tenant, args.tier)
            print(
                f"synced {args.tenant} to {result.tier}: created={result.created} "
                f"activated={result.activated} disabled={result.disabled} unchanged={result.unchanged}"
            )
        else:
            subscription = await change_tier(session, args.tenant, args.tier)
            print(
                f"{args.tenant} now on {subscription.tier}: max_admins={subscription.max_admins} "
                f"ai_credits={subscription.ai_credits}"
            )
    await engine.dispose()
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_apply(args))
    except Exception as exc:  # noqa: BLE001 - surface tier change failures clearly
        print(f"set_tier failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
