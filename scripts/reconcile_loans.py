#!/usr/bin/env python3
"""
Repair loans left without an application link and verify stored balances.

Prints a JSON report. Nothing is written unless --apply is given.

Usage:
    python scripts/reconcile_loans.py
    python scripts/reconcile_loans.py --apply
"""

from __future__ import annotations

import argparse
import asyncio
import json

from zariya.core.logging import configure_logging
from zariya.db.session import AsyncSessionLocal, engine
from zariya.services.reconciliation import reconcile_orphan_loans, verify_loan_balances


async def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--apply", action="store_true", help="commit the repairs")
    args = parser.parse_args()
    configure_logging()

    async with AsyncSessionLocal() as db:
        report = await reconcile_orphan_loans(db)
        mismatches = await verify_loan_balances(db)
        if args.apply:
            await db.commit()
        else:
            await db.rollback()
    await engine.dispose()

    output = {
        "applied": args.apply,
        "orphans": report.model_dump(mode="json"),
        "balance_mismatches": [item.model_dump(mode="json") for item in mismatches],
    }
    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
