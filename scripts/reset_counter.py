#!/usr/bin/env python3
"""
Force an identifier sequence counter to a given value.

Only for repairing counters after a data import; setting a counter below the
highest identifier already issued makes the next issuance collide.

Usage:
    python scripts/reset_counter.py membership --value 120
    python scripts/reset_counter.py loan --value 0 --yes
"""

from __future__ import annotations

import argparse
import asyncio

from zariya.core.logging import configure_logging
from zariya.db.session import AsyncSessionLocal, engine
from zariya.services import sequences

KNOWN_SEQUENCES = (
    sequences.MEMBERSHIP_SEQUENCE,
    sequences.LOAN_APPLICATION_SEQUENCE,
    sequences.LOAN_SEQUENCE,
)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("name", choices=KNOWN_SEQUENCES)
    parser.add_argument("--value", type=int, default=0)
    parser.add_argument("--yes", action="store_true", help="skip the confirmation prompt")
    return parser.parse_args()


async def main() -> None:
    args = _parse_args()
    configure_logging()

    async with AsyncSessionLocal() as db:
        current = await sequences.current_value(db, args.name)
        print(f"Counter '{args.name}' is at {current}; it will be set to {args.value}.")
        if args.value < current and not args.yes:
            confirm = input("Lowering a counter can reissue existing identifiers. Type 'reset' to confirm: ")
            if confirm != "reset":
                print("Aborted.")
                return
        await sequences.reset_to(db, args.name, args.value)
        await db.commit()
    await engine.dispose()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
