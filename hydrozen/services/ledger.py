"""
ledger.py — Incentive ledger: points, leak rewards, achievements, monthly balances.

WRITE ORDER FOR A VERIFIED LEAK
───────────────────────────────
  1. insert leakage_reports {status: verified, points_awarded: 50}
  2. $inc user_stats {points: +50, total_leakages_reported: +1}   (upsert)
  3. insert points_history {points: +50, action: LEAKAGE_REPORT}
  4. evaluate achievements → insert user_achievements

Steps 1–2 are the primary write: if 2 fails, the report from 1 is deleted
and the error propagates. Steps 3–4 are secondary: a failure there is logged
as a LedgerInconsistencyError and the primary write stands. reconcile()
repairs the gap later by appending a compensating history entry.

Every aggregate change is a server-side $inc. Nothing reads points, adds to
them in Python and writes them back, so two concurrent rewards for the same
user both land. reconcile() is the one writer that sets points outright; it
only touches a stats row that has been quiet for the grace window and is
still exactly as it was read (compare-and-set on points and leak count).

BILLING PERIODS
───────────────
Rewards and penalties accumulate on one billing_periods document per
(user_id, period). rollover_period() closes a period without touching its
totals and opens the next one at zero. A closed period refuses further
deltas with ConflictError.

USAGE
─────
    ledger = IncentiveLedger(db)
    result = await ledger.apply_leak_reward(user_id, verdict, image_url)
    result.report           → the stored LeakReport
    result.stats.points     → new total
    result.unlocked         → achievements unlocked by this reward
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from hydrozen.core.config import settings
from hydrozen.core.errors import ConflictError, LedgerInconsistencyError
from hydrozen.models.leakage import ImageVerdict, LeakReport, LeakRewardResult
from hydrozen.models.ledger import (
    ACTION_LEAKAGE_REPORT,
    ACTION_RECONCILIATION,
    Achievement,
    AchievementProgress,
    BillingPeriodBalance,
    LeaderboardEntry,
    PointsHistoryEntry,
    PointsUpdate,
    RolloverResult,
    UsageDeltaResult,
    UserAchievement,
    UserStats,
)
from hydrozen.services import achievements as evaluator
from hydrozen.services.telemetry_store import Subscription

logger = logging.getLogger(__name__)

POINTS_FOR_LEAKAGE = 50

# Usage-vs-average adjustments, in currency units (not points)
PENALTY_STEP_LITRES = 50
PENALTY_PER_STEP = 10
REWARD_STEP_LITRES = 25
REWARD_PER_STEP = 5

PointsCallback = Callable[[PointsUpdate], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # Motor hands back naive datetimes unless the client is tz_aware
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def billing_period(moment: Optional[datetime] = None) -> str:
    """Billing period key for *moment* (UTC), e.g. "2026-10"."""
    return (moment or _utcnow()).strftime("%Y-%m")


def next_period(period: str) -> str:
    """Period after *period*, e.g. 2026-12 → 2027-01."""
    year, month = (int(part) for part in period.split("-"))
    year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return f"{year:04d}-{month:02d}"


def compute_usage_adjustment(current_daily: float, average_daily: float) -> tuple[float, int, int]:
    """
    Return (difference, reward, penalty) for one day's consumption.

    Over the average: 10 per started 50 L. Under it: 5 per full 25 L saved.
    Exactly on the average: nothing.
    """
    diff = current_daily - average_daily
    reward = penalty = 0
    if diff > 0:
        penalty = math.ceil(diff / PENALTY_STEP_LITRES) * PENALTY_PER_STEP
    elif diff < 0:
        reward = math.floor(abs(diff) / REWARD_STEP_LITRES) * REWARD_PER_STEP
    return diff, reward, penalty


# ── Document helpers ──────────────────────────────────────────────────────────

def _doc_to_stats(user_id: str, doc: Optional[dict]) -> UserStats:
    if not doc:
        return UserStats(user_id=user_id)
    return UserStats(
        user_id=user_id,
        points=int(doc.get("points", 0)),
        total_leakages_reported=int(doc.get("total_leakages_reported", 0)),
        water_saved_litres=float(doc.get("water_saved_litres", 0.0)),
        updated_at=doc.get("updated_at"),
    )


def _doc_to_achievement(doc: dict) -> Achievement:
    return Achievement(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        description=doc.get("description", ""),
        points_required=int(doc.get("points_required", 0)),
        condition_type=doc.get("condition_type", "points"),
        condition_value=doc.get("condition_value"),
        badge_url=doc.get("badge_url"),
    )


def _doc_to_entry(doc: dict) -> PointsHistoryEntry:
    return PointsHistoryEntry(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        points=int(doc.get("points", 0)),
        action=doc.get("action", ""),
        description=doc.get("description", ""),
        created_at=doc.get("created_at", _utcnow()),
    )


def _doc_to_balance(user_id: str, period: str, doc: Optional[dict]) -> BillingPeriodBalance:
    doc = doc or {}
    return BillingPeriodBalance(
        user_id=user_id,
        period=period,
        monthly_rewards=int(doc.get("monthly_rewards", 0)),
        monthly_penalties=int(doc.get("monthly_penalties", 0)),
        closed=bool(doc.get("closed", False)),
        closed_at=doc.get("closed_at"),
        updated_at=doc.get("updated_at"),
    )


def doc_to_report(doc: dict) -> LeakReport:
    return LeakReport(
        id=str(doc["_id"]),
        user_id=doc.get("user_id"),
        image_url=doc.get("image_url"),
        status=doc.get("status", "pending"),
        verification_confidence=doc.get("verification_confidence"),
        verification_description=doc.get("verification_description"),
        points_awarded=int(doc.get("points_awarded", 0)),
        location=doc.get("location"),
        severity=doc.get("severity"),
        difference=doc.get("difference"),
        created_at=doc.get("created_at", _utcnow()),
    )


# ── Ledger ────────────────────────────────────────────────────────────────────

class IncentiveLedger:
    """All reads and writes of points, achievements and monthly balances."""

    def __init__(self, db, reconcile_grace: Optional[timedelta] = None) -> None:
        self.db = db
        self.reconcile_grace = (
            timedelta(seconds=settings.reconcile_grace_seconds)
            if reconcile_grace is None else reconcile_grace
        )

    # ── Primary writes ────────────────────────────────────────────────────

    async def _increment_stats(self, user_id: str, points: int, leakages: int = 0) -> UserStats:
        doc = await self.db["user_stats"].find_one_and_update(
            {"user_id": user_id},
            {
                "$inc": {"points": points, "total_leakages_reported": leakages},
                "$set": {"updated_at": _utcnow()},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _doc_to_stats(user_id, doc)

    async def _append_history(
        self, user_id: str, points: int, action: str, description: str
    ) -> Optional[str]:
        """Append a history entry; on failure log and return the inconsistency text."""
        entry = PointsHistoryEntry(
            user_id=user_id, points=points, action=action, description=description
        )
        try:
            await self.db["points_history"].insert_one(entry.model_dump(exclude={"id"}))
        except PyMongoError as exc:
            return self._log_inconsistency(user_id, "points_history.insert", exc)
        return None

    @staticmethod
    def _log_inconsistency(user_id: str, operation: str, exc: Exception) -> str:
        error = LedgerInconsistencyError(
            f"{operation} failed for user {user_id} after stats update: {exc}",
            user_id=user_id,
            operation=operation,
        )
        logger.error("Ledger inconsistency: %s", error.message)
        return error.message

    async def apply_leak_reward(
        self, user_id: str, verdict: ImageVerdict, image_url: str
    ) -> LeakRewardResult:
        """Record a verified leak report and pay out POINTS_FOR_LEAKAGE."""
        reports = self.db["leakage_reports"]
        report_doc = {
            "user_id": user_id,
            "image_url": image_url,
            "status": "verified",
            "verification_confidence": verdict.confidence,
            "verification_description": verdict.description,
            "points_awarded": POINTS_FOR_LEAKAGE,
            "created_at": _utcnow(),
        }
        inserted = await reports.insert_one(report_doc)
        report = doc_to_report({**report_doc, "_id": inserted.inserted_id})

        try:
            stats = await self._increment_stats(user_id, POINTS_FOR_LEAKAGE, leakages=1)
        except PyMongoError:
            logger.error("Stats update failed for user %s — removing report %s", user_id, report.id)
            await reports.delete_one({"_id": inserted.inserted_id})
            raise

        inconsistencies = []
        problem = await self._append_history(
            user_id,
            POINTS_FOR_LEAKAGE,
            ACTION_LEAKAGE_REPORT,
            "Points awarded for verified water leakage report",
        )
        if problem:
            inconsistencies.append(problem)

        unlocked, problems = await self._unlock_achievements(user_id, stats)
        inconsistencies.extend(problems)

        logger.info(
            "Leak reward applied: user=%s report=%s points=%d unlocked=%d",
            user_id, report.id, stats.points, len(unlocked),
        )
        return LeakRewardResult(
            report=report,
            stats=stats,
            unlocked=unlocked,
            inconsistencies=inconsistencies,
        )

    async def award_points(
        self, user_id: str, points: int, action: str, description: str = ""
    ) -> UserStats:
        """Generic signed award (challenge completions, manual corrections)."""
        stats = await self._increment_stats(user_id, points)
        await self._append_history(user_id, points, action, description)
        if points > 0:
            await self._unlock_achievements(user_id, stats)
        return stats

    # ── Achievements ──────────────────────────────────────────────────────

    async def get_catalog(self) -> list[Achievement]:
        catalog = []
        async for doc in self.db["achievements"].find({}).sort("points_required", 1):
            catalog.append(_doc_to_achievement(doc))
        return catalog

    async def _earned_ids(self, user_id: str) -> set[str]:
        earned = set()
        async for doc in self.db["user_achievements"].find({"user_id": user_id}):
            earned.add(str(doc["achievement_id"]))
        return earned

    async def _unlock_achievements(
        self, user_id: str, stats: UserStats
    ) -> tuple[list[Achievement], list[str]]:
        try:
            catalog = await self.get_catalog()
            earned = await self._earned_ids(user_id)
        except PyMongoError as exc:
            return [], [self._log_inconsistency(user_id, "achievements.read", exc)]

        unlocked, problems = [], []
        for achievement in evaluator.evaluate(user_id, stats, catalog, earned):
            try:
                await self.db["user_achievements"].insert_one({
                    "user_id": user_id,
                    "achievement_id": achievement.id,
                    "achieved_at": _utcnow(),
                })
            except DuplicateKeyError:
                # A concurrent evaluation got there first
                continue
            except PyMongoError as exc:
                problems.append(self._log_inconsistency(user_id, "user_achievements.insert", exc))
                continue
            logger.info("Awarded achievement %s to user %s", achievement.name, user_id)
            unlocked.append(achievement)
        return unlocked, problems

    async def evaluate_achievements(self, user_id: str) -> list[Achievement]:
        """Re-run the evaluator against current stats. Safe to call any time."""
        stats = await self.get_stats(user_id)
        unlocked, _ = await self._unlock_achievements(user_id, stats)
        return unlocked

    async def get_user_achievements(self, user_id: str) -> list[UserAchievement]:
        catalog = {a.id: a for a in await self.get_catalog()}
        rows = []
        cursor = self.db["user_achievements"].find({"user_id": user_id}).sort("achieved_at", DESCENDING)
        async for doc in cursor:
            achievement_id = str(doc["achievement_id"])
            rows.append(UserAchievement(
                id=str(doc["_id"]),
                user_id=user_id,
                achievement_id=achievement_id,
                achieved_at=doc.get("achieved_at", _utcnow()),
                achievement=catalog.get(achievement_id),
            ))
        return rows

    async def get_achievement_progress(self, user_id: str) -> list[AchievementProgress]:
        stats = await self.get_stats(user_id)
        return evaluator.progress(stats, await self.get_catalog(), await self._earned_ids(user_id))

    # ── Monthly usage rewards / penalties ─────────────────────────────────

    async def apply_usage_delta(
        self,
        user_id: str,
        current_daily: float,
        average_daily: float,
        period: Optional[str] = None,
    ) -> UsageDeltaResult:
        """
        Accumulate today's reward or penalty into the billing period.

        Litres saved under the average also go onto user_stats, where the
        water_saved achievements read them. That write is secondary.
        """
        period = period or billing_period()
        diff, reward, penalty = compute_usage_adjustment(current_daily, average_daily)

        try:
            doc = await self.db["billing_periods"].find_one_and_update(
                {"user_id": user_id, "period": period, "closed": {"$ne": True}},
                {
                    "$inc": {"monthly_rewards": reward, "monthly_penalties": penalty},
                    "$set": {"updated_at": _utcnow()},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            # The only (user_id, period) row the filter can miss is a closed one
            raise ConflictError(f"Billing period {period} is closed") from exc

        water_saved = -diff if diff < 0 else 0.0
        unlocked, inconsistencies = [], []
        if water_saved > 0:
            try:
                stats_doc = await self.db["user_stats"].find_one_and_update(
                    {"user_id": user_id},
                    {"$inc": {"water_saved_litres": water_saved}, "$set": {"updated_at": _utcnow()}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except PyMongoError as exc:
                inconsistencies.append(self._log_inconsistency(user_id, "user_stats.water_saved", exc))
            else:
                unlocked, problems = await self._unlock_achievements(
                    user_id, _doc_to_stats(user_id, stats_doc)
                )
                inconsistencies.extend(problems)

        logger.debug(
            "Usage delta for %s (%s): diff=%.1f reward=%d penalty=%d",
            user_id, period, diff, reward, penalty,
        )
        return UsageDeltaResult(
            user_id=user_id,
            period=period,
            current_daily=current_daily,
            average_daily=average_daily,
            difference=diff,
            reward=reward,
            penalty=penalty,
            water_saved=water_saved,
            balance=_doc_to_balance(user_id, period, doc),
            unlocked=unlocked,
            inconsistencies=inconsistencies,
        )

    async def get_balance(self, user_id: str, period: Optional[str] = None) -> BillingPeriodBalance:
        period = period or billing_period()
        doc = await self.db["billing_periods"].find_one({"user_id": user_id, "period": period})
        return _doc_to_balance(user_id, period, doc)

    async def rollover_period(self, user_id: str, period: str) -> RolloverResult:
        """
        Close *period* and open the one after it.

        The closed period keeps its totals for billing. Running the rollover
        twice is harmless: an already closed period keeps its first closed_at.
        """
        now = _utcnow()
        periods = self.db["billing_periods"]
        try:
            closed_doc = await periods.find_one_and_update(
                {"user_id": user_id, "period": period, "closed": {"$ne": True}},
                {"$set": {"closed": True, "closed_at": now, "updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            closed_doc = await periods.find_one({"user_id": user_id, "period": period})

        following = next_period(period)
        await periods.update_one(
            {"user_id": user_id, "period": following},
            {"$setOnInsert": {"monthly_rewards": 0, "monthly_penalties": 0, "closed": False, "updated_at": now}},
            upsert=True,
        )
        closed = _doc_to_balance(user_id, period, closed_doc)
        logger.info(
            "Billing period %s closed for user %s (rewards=%d penalties=%d); %s opened",
            period, user_id, closed.monthly_rewards, closed.monthly_penalties, following,
        )
        return RolloverResult(closed=closed, opened=await self.get_balance(user_id, following))

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_stats(self, user_id: str) -> UserStats:
        doc = await self.db["user_stats"].find_one({"user_id": user_id})
        return _doc_to_stats(user_id, doc)

    async def get_points_history(self, user_id: str, limit: int = 50) -> list[PointsHistoryEntry]:
        entries = []
        cursor = (
            self.db["points_history"]
            .find({"user_id": user_id})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        async for doc in cursor:
            entries.append(_doc_to_entry(doc))
        return entries

    async def history_total(self, user_id: str) -> int:
        total = 0
        async for doc in self.db["points_history"].find({"user_id": user_id}):
            total += int(doc.get("points", 0))
        return total

    async def list_reports(self, user_id: str, limit: int = 20) -> list[LeakReport]:
        items = []
        cursor = (
            self.db["leakage_reports"]
            .find({"user_id": user_id})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        async for doc in cursor:
            try:
                items.append(doc_to_report(doc))
            except Exception as exc:
                logger.warning("Skipping malformed leakage report doc: %s", exc)
        return items

    async def get_leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        rows = []
        cursor = self.db["user_stats"].find({}).sort("points", DESCENDING).limit(limit)
        async for doc in cursor:
            rows.append(LeaderboardEntry(
                rank=len(rows) + 1,
                user_id=doc["user_id"],
                points=int(doc.get("points", 0)),
                total_leakages_reported=int(doc.get("total_leakages_reported", 0)),
            ))
        return rows

    def subscribe_points(
        self, user_id: str, callback: PointsCallback, interval: float = 5.0
    ) -> Subscription:
        """
        Poll the user's stats every *interval* seconds; call *callback* when
        points or the leak count move. The first poll always fires.
        """

        async def _loop() -> None:
            last: Optional[PointsUpdate] = None
            while True:
                try:
                    stats = await self.get_stats(user_id)
                except PyMongoError as exc:
                    logger.warning("Points poll failed for user %s: %s", user_id, exc)
                else:
                    update = PointsUpdate(
                        user_id=user_id,
                        points=stats.points,
                        total_leakages_reported=stats.total_leakages_reported,
                    )
                    if update != last:
                        last = update
                        try:
                            await callback(update)
                        except asyncio.CancelledError:
                            raise
                        except Exception:
                            logger.exception("Points subscriber callback failed")
                await asyncio.sleep(interval)

        return Subscription(asyncio.create_task(_loop()))

    # ── Repair ────────────────────────────────────────────────────────────

    async def reconcile(self, user_id: str) -> UserStats:
        """
        Bring the cached stats row and the history back into agreement.

        Points that reached user_stats without a history entry (a logged
        inconsistency) get a compensating RECONCILIATION entry; a history
        sum above the cached points replaces them. The leak count is
        re-derived from verified reports.

        A stats row written within the grace window may belong to a reward
        whose history insert is still in flight, so it is left alone. The
        correction itself is a compare-and-set: if the row changed after it
        was read, nothing is written and the next run tries again.
        """
        doc = await self.db["user_stats"].find_one({"user_id": user_id})
        cached = _doc_to_stats(user_id, doc)
        if doc is None:
            return cached

        if cached.updated_at and _utcnow() - _as_utc(cached.updated_at) < self.reconcile_grace:
            logger.info("Reconcile for user %s deferred: stats written %s", user_id, cached.updated_at)
            return cached

        history_sum = await self.history_total(user_id)
        leakages = await self.db["leakage_reports"].count_documents(
            {"user_id": user_id, "status": "verified"}
        )
        gap = cached.points - history_sum
        points = max(cached.points, history_sum)
        if gap == 0 and leakages == cached.total_leakages_reported:
            return cached

        now = _utcnow()
        result = await self.db["user_stats"].update_one(
            {
                "user_id": user_id,
                "points": cached.points,
                "total_leakages_reported": cached.total_leakages_reported,
            },
            {"$set": {"points": points, "total_leakages_reported": leakages, "updated_at": now}},
        )
        if result.matched_count == 0:
            logger.warning("Stats for user %s changed during reconcile; left for the next run", user_id)
            return await self.get_stats(user_id)

        if gap > 0:
            logger.warning(
                "Reconciling user %s: stats=%d history=%d (gap %d)",
                user_id, cached.points, history_sum, gap,
            )
            await self.db["points_history"].insert_one(
                PointsHistoryEntry(
                    user_id=user_id,
                    points=gap,
                    action=ACTION_RECONCILIATION,
                    description="Restores history entries lost after a stats update",
                ).model_dump(exclude={"id"})
            )
        return cached.model_copy(
            update={"points": points, "total_leakages_reported": leakages, "updated_at": now}
        )
