"""
rewards.py — Points, achievements and monthly usage balance routes.

Routes:
  GET  /api/v1/rewards/stats                  — points + leak count
  GET  /api/v1/rewards/history                — points history, newest first
  GET  /api/v1/rewards/achievements           — unlocked achievements
  GET  /api/v1/rewards/achievements/progress  — every catalog entry with progress
  GET  /api/v1/rewards/leaderboard            — top users by points (public)
  GET  /api/v1/rewards/balance                — current billing period balance
  POST /api/v1/rewards/usage                  — apply today's usage vs average
  POST /api/v1/rewards/reconcile              — repair stats from the ledger history
  WS   /api/v1/rewards/stream?token=…         — push {points, total_leakages_reported} on change

All routes except the leaderboard act on the bearer token's user. Browsers
cannot set headers on a WebSocket, so the stream takes the token as a query
parameter and closes with 1008 when it is missing or invalid.
"""

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from hydrozen.core.config import settings
from hydrozen.core.security import CurrentUserId, decode_access_token
from hydrozen.models.ledger import (
    AchievementProgress,
    BillingPeriodBalance,
    LeaderboardEntry,
    PointsHistoryEntry,
    PointsUpdate,
    UsageDeltaRequest,
    UsageDeltaResult,
    UserAchievement,
    UserStats,
)
from hydrozen.routes.deps import get_ledger
from hydrozen.services.ledger import IncentiveLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rewards", tags=["rewards"])

LedgerDep = Depends(get_ledger)


@router.get("/stats", response_model=UserStats)
async def get_stats(user_id: CurrentUserId, ledger: IncentiveLedger = LedgerDep):
    return await ledger.get_stats(user_id)


@router.get("/history", response_model=list[PointsHistoryEntry])
async def get_history(
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=500),
    ledger: IncentiveLedger = LedgerDep,
):
    return await ledger.get_points_history(user_id, limit=limit)


@router.get("/achievements", response_model=list[UserAchievement])
async def get_achievements(user_id: CurrentUserId, ledger: IncentiveLedger = LedgerDep):
    return await ledger.get_user_achievements(user_id)


@router.get("/achievements/progress", response_model=list[AchievementProgress])
async def get_achievement_progress(user_id: CurrentUserId, ledger: IncentiveLedger = LedgerDep):
    return await ledger.get_achievement_progress(user_id)


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    ledger: IncentiveLedger = LedgerDep,
):
    return await ledger.get_leaderboard(limit=limit)


@router.get("/balance", response_model=BillingPeriodBalance)
async def get_balance(
    user_id: CurrentUserId,
    period: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
    ledger: IncentiveLedger = LedgerDep,
):
    return await ledger.get_balance(user_id, period)


@router.post("/usage", response_model=UsageDeltaResult)
async def apply_usage(
    payload: UsageDeltaRequest,
    user_id: CurrentUserId,
    ledger: IncentiveLedger = LedgerDep,
):
    """Reward (under average) or penalty (over average) for one day's usage."""
    return await ledger.apply_usage_delta(user_id, payload.current_daily, payload.average_daily)


@router.post("/reconcile", response_model=UserStats)
async def reconcile(user_id: CurrentUserId, ledger: IncentiveLedger = LedgerDep):
    """Re-derive stats from the history and re-run achievement evaluation."""
    stats = await ledger.reconcile(user_id)
    await ledger.evaluate_achievements(user_id)
    return stats


@router.websocket("/stream")
async def points_stream(websocket: WebSocket, token: str = ""):
    """Live points feed for the token's user. One poll loop per connection."""
    user_id = decode_access_token(token) if token else None
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    db_client = getattr(websocket.app.state, "db_client", None)
    db = getattr(db_client, "db", None)
    if db is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()

    async def push(update: PointsUpdate) -> None:
        await websocket.send_text(json.dumps(update.model_dump(mode="json")))

    subscription = IncentiveLedger(db).subscribe_points(user_id, push, interval=settings.points_poll_seconds)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Points stream for user %s disconnected", user_id)
    finally:
        subscription.cancel()
