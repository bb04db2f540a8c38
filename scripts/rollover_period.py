#!/usr/bin/env python3
"""
rollover_period.py — Close a billing period and open the next one.

Run by the billing scheduler once a period ends. Every user with a
billing_periods document for the given period has it marked closed (its
reward / penalty totals are kept for billing) and gets a zeroed document
for the following period. Late usage deltas for a closed period are refused.

Usage:
    python scripts/rollover_period.py --period 2026-09
    python scripts/rollover_period.py --period 2026-09 --user u123
    python scripts/rollover_period.py --period 2026-09 --dry-run
"""

import argparse
import asyncio
import re
import sys

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

from hydrozen.core.config import settings
from hydrozen.services.ledger import IncentiveLedger, next_period


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--period", required=True, help="Billing period to close, YYYY-MM")
    parser.add_argument("--user", help="Only roll over this user")
    parser.add_argument("--dry-run", action="store_true", help="List balances without closing them")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    if not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", args.period):
        print(f"ERROR: period must be YYYY-MM, got {args.period!r}")
        sys.exit(1)

    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
    )
    ledger = IncentiveLedger(client[settings.mongo_db_name])

    query = {"period": args.period, "closed": {"$ne": True}}
    if args.user:
        query["user_id"] = args.user

    # Materialise first: rollover writes into the same collection
    user_ids = [doc["user_id"] async for doc in ledger.db["billing_periods"].find(query, {"user_id": 1})]

    for user_id in user_ids:
        if args.dry_run:
            balance = await ledger.get_balance(user_id, args.period)
            print(f"  would close {user_id}: rewards={balance.monthly_rewards} penalties={balance.monthly_penalties}")
            continue
        result = await ledger.rollover_period(user_id, args.period)
        print(f"  ✓ {user_id}: net {result.closed.net:+d}")

    verb = "Would close" if args.dry_run else "Closed"
    print(f"{verb} {len(user_ids)} balance(s) for {args.period}; next period {next_period(args.period)}")
    client.close()


if __name__ == "__main__":
    asyncio.run(main(_parse_args()))
