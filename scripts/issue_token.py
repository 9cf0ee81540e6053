from __future__ import annotations

import argparse
from datetime import timedelta
import sys

from edugate.domain.actors import Actor, normalize_role
from edugate.services.auth.identity import issue_token


def _build_parser() -> argparse.ArgumentParser:
    # Development helper; production tokens come from the login service.
    parser = argparse.ArgumentParser(description="Issue a signed bearer token for local testing")
    parser.add_argument("--user-id", required=True, help="User identifier (sub claim)")
    parser.add_argument(
        "--role",
        required=True,
        help="Role: SUPER_ADMIN|SCHOOL_ADMIN|TEACHER|STUDENT",
    )
    parser.add_argument("--tenant", default=None, help="School the session is bound to")
    parser.add_argument("--email", default=None, help="Optional email claim")
    parser.add_argument("--hours", type=int, default=8, help="Token lifetime in hours")
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        actor = Actor(
            user_id=args.user_id,
            role=normalize_role(args.role),
            current_tenant_id=args.tenant,
            email=args.email,
        )
    except ValueError as exc:
        print(f"issue_token failed: {exc}", file=sys.stderr)
        return 1
    print(issue_token(actor, expires_in=timedelta(hours=args.hours)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
