"""
MongoDB connection management using Motor (async driver).

The DatabaseClient is constructed once in the FastAPI lifespan and attached
to app.state; routes receive the database through the get_db dependency.
Tests override get_db with an in-memory FakeDB.

Collections owned by the core:
  leakage_reports    — verified image reports + escalated sensor alerts
  user_stats         — cached {points, total_leakages_reported} per user
  points_history     — append-only ledger entries (source of truth)
  achievements       — static catalog (seeded by scripts/seed_db.py)
  user_achievements  — one row per (user_id, achievement_id)
  billing_periods    — monthly reward / penalty accumulators
"""

import logging
import re

import certifi
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from hydrozen.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    One instance per process, created and torn down by the app lifespan.
    """

    def __init__(self, uri: str, db_name: str) -> None:
        self.uri = uri
        self.db_name = db_name
        self.client: AsyncIOMotorClient | None = None
        self.db: AsyncIOMotorDatabase | None = None

    async def connect(self) -> None:
        """
        Create the MongoDB connection and validate it with a ping.

        Fails gracefully if MongoDB is unavailable — the API still answers
        /health, but DB-dependent endpoints return 503.
        """
        logger.info("Connecting to MongoDB at %s", _redact_uri(self.uri))
        try:
            self.client = AsyncIOMotorClient(
                self.uri,
                serverSelectionTimeoutMS=5000,
                tlsCAFile=certifi.where(),
            )
            self.db = self.client[self.db_name]
            await self.client.admin.command("ping")
            await ensure_indexes(self.db)
            logger.info("MongoDB connection established (db: %s)", self.db_name)
        except Exception as exc:
            logger.warning(
                "MongoDB unavailable at startup: %s. "
                "API running in degraded mode — DB endpoints will fail.",
                exc,
            )
            self.client = None
            self.db = None

    async def close(self) -> None:
        """Close the MongoDB connection gracefully on app shutdown."""
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
        self.client = None
        self.db = None

    async def ping(self) -> bool:
        if self.client is None:
            return False
        await self.client.admin.command("ping")
        return True


async def ensure_indexes(db) -> None:
    """
    Create the indexes the ledger relies on for correctness.

    The unique index on user_achievements is what makes achievement unlocks
    exactly-once; user_stats is unique per user so $inc upserts never fork
    a second row. billing_periods is unique per (user, period), which is
    how a closed period turns a late upsert into DuplicateKeyError, and
    challenge_participants lets each user join a challenge once.
    """
    await db["user_achievements"].create_index(
        [("user_id", ASCENDING), ("achievement_id", ASCENDING)], unique=True
    )
    await db["user_stats"].create_index([("user_id", ASCENDING)], unique=True)
    await db["points_history"].create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)]
    )
    await db["leakage_reports"].create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)]
    )
    await db["billing_periods"].create_index(
        [("user_id", ASCENDING), ("period", ASCENDING)], unique=True
    )
    await db["challenge_participants"].create_index(
        [("challenge_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )
    await db["challenges"].create_index([("status", ASCENDING), ("end_date", ASCENDING)])


def build_database_client() -> DatabaseClient:
    return DatabaseClient(settings.mongo_uri, settings.mongo_db_name)


def get_db(request: Request) -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency — inject the database into route handlers.

    Returns None when MongoDB is unavailable so routes can answer 503
    instead of crashing.
    """
    db_client: DatabaseClient | None = getattr(request.app.state, "db_client", None)
    if db_client is None:
        return None
    return db_client.db


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
