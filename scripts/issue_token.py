"""
Mint a signed bearer token for calling the takeoff API during development.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from takeoffs.auth import issue_token
from takeoffs.config import get_settings

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue a development JWT")
    parser.add_argument("--user-id", required=True, help="Value for the id claim")
    parser.add_argument("--email", default=None, help="Optional email claim")
    parser.add_argument(
        "--role",
        default="user",
        choices=["user", "admin"],
        help="Role claim; admin is required for deletes",
    )
    parser.add_argument(
        "--expires-in",
        type=int,
        default=3600,
        help="Token lifetime in seconds",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )

    claims = {"id": args.user_id, "role": args.role}
    if args.email:
        claims["email"] = args.email
    try:
        token = issue_token(claims, get_settings(), expires_in=args.expires_in)
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
