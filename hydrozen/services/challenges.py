"""
challenges.py — Community challenges and community-wide totals.

A challenge is a time-boxed goal worth a fixed number of points. Users join
while it is running; an operator marks each participant's completion
(scripts/challenge_admin.py), which pays the points out through
IncentiveLedger.award_points so the history and achievements stay in step.

Collections:
  challenges              {title, description, start_date, end_date, points, status}
  challenge_participants  {challenge_id, user_id, joined_at, completed_at, points_earned}
                          unique on (challenge_id, user_id)

Completion is exactly-once: the participant row flips from completed_at=None
with a conditional update before any points move. If the award itself
fails, the flip is undone and the error propagates.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from hydrozen.core.errors import ConflictError, NotFoundError
from hydrozen.models.ledger import (
    ACTION_CHALLENGE_COMPLETED,
    Challenge,
    ChallengeCreate,
    ChallengeParticipant,
    CommunityStats,
    TopPerformer,
    TopSaver,
)
from hydrozen.services.ledger import IncentiveLedger

logger = logging.getLogger(__name__)

TOP_PERFORMERS = 3
TOP_SAVERS = 5


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _oid(challenge_id: str) -> ObjectId:
    try:
        return ObjectId(challenge_id)
    except (InvalidId, TypeError):
        raise NotFoundError(f"Challenge {challenge_id!r} not found")


def _doc_to_participant(doc: dict) -> ChallengeParticipant:
    return ChallengeParticipant(
        id=str(doc["_id"]),
        challenge_id=doc["challenge_id"],
        user_id=doc["user_id"],
        joined_at=doc.get("joined_at", _utcnow()),
        completed_at=doc.get("completed_at"),
        points_earned=int(doc.get("points_earned", 0)),
    )


class CommunityBoard:
    def __init__(self, db, ledger: IncentiveLedger) -> None:
        self.db = db
        self.ledger = ledger

    async def _challenge_doc(self, challenge_id: str) -> dict:
        doc = await self.db["challenges"].find_one({"_id": _oid(challenge_id)})
        if doc is None:
            raise NotFoundError(f"Challenge {challenge_id!r} not found")
        return doc

    async def _to_challenge(self, doc: dict) -> Challenge:
        challenge_id = str(doc["_id"])
        participants = self.db["challenge_participants"]
        performers = []
        cursor = (
            participants.find({"challenge_id": challenge_id, "completed_at": {"$ne": None}})
            .sort("points_earned", DESCENDING)
            .limit(TOP_PERFORMERS)
        )
        async for row in cursor:
            performers.append(TopPerformer(user_id=row["user_id"], points_earned=int(row.get("points_earned", 0))))

        return Challenge(
            id=challenge_id,
            title=doc["title"],
            description=doc.get("description", ""),
            start_date=doc["start_date"],
            end_date=doc["end_date"],
            points=int(doc["points"]),
            status=doc.get("status", "active"),
            participants=await participants.count_documents({"challenge_id": challenge_id}),
            top_performers=performers,
        )

    async def create_challenge(self, payload: ChallengeCreate) -> Challenge:
        doc = {**payload.model_dump(), "status": "active", "created_at": _utcnow()}
        inserted = await self.db["challenges"].insert_one(doc)
        logger.info("Challenge %s created: %s (%d pts)", inserted.inserted_id, payload.title, payload.points)
        return await self._to_challenge({**doc, "_id": inserted.inserted_id})

    async def get_active_challenges(self, now: Optional[datetime] = None) -> list[Challenge]:
        """Running challenges, the one ending soonest first."""
        now = now or _utcnow()
        cursor = (
            self.db["challenges"]
            .find({"status": "active", "end_date": {"$gte": now}})
            .sort("end_date", ASCENDING)
        )
        challenges = []
        async for doc in cursor:
            challenges.append(await self._to_challenge(doc))
        return challenges

    async def join_challenge(self, user_id: str, challenge_id: str) -> ChallengeParticipant:
        doc = await self._challenge_doc(challenge_id)
        if doc.get("status") != "active" or _as_utc(doc["end_date"]) < _utcnow():
            raise ConflictError(f"Challenge {challenge_id!r} is no longer running")

        row = {
            "challenge_id": challenge_id,
            "user_id": user_id,
            "joined_at": _utcnow(),
            "completed_at": None,
            "points_earned": 0,
        }
        try:
            inserted = await self.db["challenge_participants"].insert_one(row)
        except DuplicateKeyError as exc:
            raise ConflictError(f"Already joined challenge {challenge_id!r}") from exc
        logger.info("User %s joined challenge %s", user_id, challenge_id)
        return _doc_to_participant({**row, "_id": inserted.inserted_id})

    async def complete_challenge(self, user_id: str, challenge_id: str) -> ChallengeParticipant:
        """Mark *user_id* as having completed the challenge and pay its points."""
        challenge = await self._challenge_doc(challenge_id)
        points = int(challenge["points"])
        participants = self.db["challenge_participants"]
        key = {"challenge_id": challenge_id, "user_id": user_id}

        doc = await participants.find_one_and_update(
            {**key, "completed_at": None},
            {"$set": {"completed_at": _utcnow(), "points_earned": points}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            if await participants.find_one(key) is None:
                raise NotFoundError(f"User {user_id} has not joined challenge {challenge_id!r}")
            raise ConflictError(f"User {user_id} already completed challenge {challenge_id!r}")

        try:
            await self.ledger.award_points(
                user_id, points, ACTION_CHALLENGE_COMPLETED, f"Completed challenge: {challenge['title']}"
            )
        except PyMongoError:
            logger.error("Award for challenge %s failed for user %s; completion undone", challenge_id, user_id)
            await participants.update_one(key, {"$set": {"completed_at": None, "points_earned": 0}})
            raise
        return _doc_to_participant(doc)

    async def get_community_stats(self) -> CommunityStats:
        pipeline = [
            {
                "$group": {
                    "_id": None,
                    "total_users": {"$sum": 1},
                    "total_water_saved": {"$sum": "$water_saved_litres"},
                    "total_leaks_reported": {"$sum": "$total_leakages_reported"},
                }
            }
        ]
        totals = {}
        async for doc in self.db["user_stats"].aggregate(pipeline):
            totals = doc

        savers = []
        cursor = (
            self.db["user_stats"]
            .find({"water_saved_litres": {"$gt": 0}})
            .sort("water_saved_litres", DESCENDING)
            .limit(TOP_SAVERS)
        )
        async for doc in cursor:
            savers.append(TopSaver(user_id=doc["user_id"], water_saved_litres=float(doc["water_saved_litres"])))

        return CommunityStats(
            total_users=int(totals.get("total_users", 0)),
            total_water_saved=float(totals.get("total_water_saved", 0.0)),
            total_leaks_reported=int(totals.get("total_leaks_reported", 0)),
            total_challenges_completed=await self.db["challenge_participants"].count_documents(
                {"completed_at": {"$ne": None}}
            ),
            top_savers=savers,
        )
