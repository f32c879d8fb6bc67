"""
Register (or update) a user so takeoff reads can expand `createdBy`.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from takeoffs.db import InMemoryTakeoffStore
from takeoffs.dependencies import get_takeoff_store

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Add a takeoff creator")
    parser.add_argument("--id", required=True, help="User id used in createdBy")
    parser.add_argument("--email", required=True)
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )

    store = get_takeoff_store()
    if isinstance(store, InMemoryTakeoffStore):
        logger.error("DATABASE_URL is not set; refusing to write to an in-memory store")
        return 1
    store.save_user(
        {
            "id": args.id,
            "email": args.email,
            "first_name": args.first_name,
            "last_name": args.last_name,
        }
    )
    logger.info("Saved user %s", args.id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
