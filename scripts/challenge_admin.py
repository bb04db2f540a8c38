#!/usr/bin/env python3
"""
challenge_admin.py — Operator commands for community challenges.

Usage:
    python scripts/challenge_admin.py create --title "Fix-a-drip week" \
        --start 2026-10-01 --end 2026-10-07 --points 75
    python scripts/challenge_admin.py complete --challenge 6710f3... --user u123 --user u456

`complete` pays each user the challenge's points through the ledger. Users
who never joined or already completed are reported and skipped.
"""

import argparse
import asyncio
from datetime import datetime, timezone

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

from hydrozen.core.config import settings
from hydrozen.core.errors import HydroZenError
from hydrozen.models.ledger import ChallengeCreate
from hydrozen.services.challenges import CommunityBoard
from hydrozen.services.ledger import IncentiveLedger


def _date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create an active challenge")
    create.add_argument("--title", required=True)
    create.add_argument("--description", default="")
    create.add_argument("--start", type=_date, required=True, help="YYYY-MM-DD (UTC)")
    create.add_argument("--end", type=_date, required=True, help="YYYY-MM-DD (UTC)")
    create.add_argument("--points", type=int, required=True)

    complete = commands.add_parser("complete", help="Mark participants as completed and award points")
    complete.add_argument("--challenge", required=True, help="Challenge id")
    complete.add_argument("--user", action="append", required=True, help="User id (repeatable)")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
    )
    db = client[settings.mongo_db_name]
    board = CommunityBoard(db, IncentiveLedger(db))

    if args.command == "create":
        challenge = await board.create_challenge(ChallengeCreate(
            title=args.title,
            description=args.description,
            start_date=args.start,
            end_date=args.end,
            points=args.points,
        ))
        print(f"Created challenge {challenge.id}: {challenge.title} ({challenge.points} pts)")
    else:
        for user_id in args.user:
            try:
                row = await board.complete_challenge(user_id, args.challenge)
            except HydroZenError as exc:
                print(f"  ✗ {user_id}: {exc.message}")
                continue
            print(f"  ✓ {user_id}: +{row.points_earned} pts")

    client.close()


if __name__ == "__main__":
    asyncio.run(main(_parse_args()))
