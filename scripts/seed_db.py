#!/usr/bin/env python3
"""
seed_db.py — Seed the achievement catalog and create ledger indexes.

Inserts:
  - The achievement catalog shown on the rewards page
  - The unique indexes the ledger depends on (same as app startup)

Usage:
    python scripts/seed_db.py

Requires:
    pip install -e .
    MongoDB running locally (or set MONGO_URI env var)

Safe to re-run: catalog entries are upserted by id, never duplicated.
"""

import asyncio

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

from hydrozen.core.config import settings
from hydrozen.core.database import ensure_indexes

# _id is a readable slug so user_achievements rows stay legible in the shell
ACHIEVEMENTS = [
    {
        "_id": "novice-reporter",
        "name": "Novice Reporter",
        "description": "Earn your first points by reporting a verified leak.",
        "points_required": 50,
    },
    {
        "_id": "active-citizen",
        "name": "Active Citizen",
        "description": "Reach 200 points from verified leak reports.",
        "points_required": 200,
    },
    {
        "_id": "water-guardian",
        "name": "Water Guardian",
        "description": "Reach 500 points and keep your neighbourhood dry.",
        "points_required": 500,
    },
    {
        "_id": "leak-legend",
        "name": "Leak Legend",
        "description": "Reach 1000 points — a true water-conservation hero.",
        "points_required": 1000,
    },
    {
        "_id": "eagle-eye",
        "name": "Eagle Eye",
        "description": "Get five leak reports verified.",
        "condition_type": "reports",
        "condition_value": 5,
    },
    {
        "_id": "water-saver",
        "name": "Water Saver",
        "description": "Save 500 litres against your daily average.",
        "condition_type": "water_saved",
        "condition_value": 500,
    },
]


async def main() -> None:
    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
    )
    db = client[settings.mongo_db_name]

    print(f"Seeding achievement catalog into '{settings.mongo_db_name}'…")
    for achievement in ACHIEVEMENTS:
        await db["achievements"].update_one(
            {"_id": achievement["_id"]},
            {"$set": {k: v for k, v in achievement.items() if k != "_id"}},
            upsert=True,
        )
        kind = achievement.get("condition_type", "points")
        target = achievement.get("condition_value", achievement.get("points_required"))
        print(f"  ✓ {achievement['name']} ({kind} ≥ {target})")

    print("Creating indexes…")
    await ensure_indexes(db)
    print("Done.")
    client.close()


if __name__ == "__main__":
    asyncio.run(main())
