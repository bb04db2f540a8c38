"""
ledger.py — Pydantic schemas for the incentive ledger.

PointsHistoryEntry — append-only ledger row (signed points)
Achievement        — static catalog entry, unlocked on points, reports or water saved
UserAchievement    — one unlock per (user_id, achievement_id)
UserStats          — cached aggregate; points must equal the history sum
BillingPeriodBalance / UsageDelta* — monthly reward & penalty accumulators
Challenge / ChallengeParticipant / CommunityStats — community challenges
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

ACTION_LEAKAGE_REPORT = "LEAKAGE_REPORT"
ACTION_RECONCILIATION = "RECONCILIATION"
ACTION_CHALLENGE_COMPLETED = "CHALLENGE_COMPLETED"

ConditionType = Literal["points", "reports", "water_saved"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ── Points ────────────────────────────────────────────────────────────────────

class PointsHistoryEntry(BaseModel):
    id: Optional[str] = None
    user_id: str
    points: int                  # signed
    action: str
    description: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class UserStats(BaseModel):
    user_id: str
    points: int = 0
    total_leakages_reported: int = 0
    water_saved_litres: float = 0.0
    updated_at: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    points: int
    total_leakages_reported: int = 0


class PointsUpdate(BaseModel):
    """Message pushed on the points stream whenever the user's total moves."""
    user_id: str
    points: int
    total_leakages_reported: int = 0


# ── Achievements ──────────────────────────────────────────────────────────────

class Achievement(BaseModel):
    """
    Catalog entry.

    condition_type "points" unlocks at points_required. "reports" and
    "water_saved" unlock at condition_value verified reports / litres saved.
    """

    id: str
    name: str
    description: str = ""
    points_required: int = Field(default=0, ge=0)
    condition_type: ConditionType = "points"
    condition_value: Optional[float] = Field(default=None, ge=0)
    badge_url: Optional[str] = None

    @model_validator(mode="after")
    def _value_for_non_points(self) -> "Achievement":
        if self.condition_type != "points" and self.condition_value is None:
            raise ValueError(f"condition_value is required for {self.condition_type} achievements")
        return self

    @property
    def threshold(self) -> float:
        if self.condition_type == "points":
            return self.points_required
        return self.condition_value


class UserAchievement(BaseModel):
    id: Optional[str] = None
    user_id: str
    achievement_id: str
    achieved_at: datetime = Field(default_factory=_utcnow)
    achievement: Optional[Achievement] = None


class AchievementProgress(BaseModel):
    achievement: Achievement
    earned: bool
    progress: float = Field(ge=0.0, le=1.0)


# ── Monthly usage rewards / penalties ─────────────────────────────────────────

class UsageDeltaRequest(BaseModel):
    current_daily: float = Field(ge=0.0, description="Today's consumption (litres)")
    average_daily: float = Field(ge=0.0, description="Rolling daily average / target (litres)")


class BillingPeriodBalance(BaseModel):
    user_id: str
    period: str                  # "YYYY-MM"
    monthly_rewards: int = 0
    monthly_penalties: int = 0
    # Set once the period has rolled over; totals are frozen from then on
    closed: bool = False
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def net(self) -> int:
        return self.monthly_rewards - self.monthly_penalties


class RolloverResult(BaseModel):
    closed: BillingPeriodBalance
    opened: BillingPeriodBalance


class UsageDeltaResult(BaseModel):
    user_id: str
    period: str
    current_daily: float
    average_daily: float
    difference: float
    reward: int = 0
    penalty: int = 0
    water_saved: float = 0.0
    balance: BillingPeriodBalance
    unlocked: list[Achievement] = Field(default_factory=list)
    inconsistencies: list[str] = Field(default_factory=list)


# ── Community challenges ──────────────────────────────────────────────────────

class ChallengeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    start_date: datetime
    end_date: datetime
    points: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _ends_after_start(self) -> "ChallengeCreate":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class TopPerformer(BaseModel):
    user_id: str
    points_earned: int


class Challenge(ChallengeCreate):
    id: str
    status: Literal["active", "ended"] = "active"
    participants: int = 0
    top_performers: list[TopPerformer] = Field(default_factory=list)


class ChallengeParticipant(BaseModel):
    id: Optional[str] = None
    challenge_id: str
    user_id: str
    joined_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    points_earned: int = 0


class TopSaver(BaseModel):
    user_id: str
    water_saved_litres: float


class CommunityStats(BaseModel):
    total_users: int = 0
    total_water_saved: float = 0.0
    total_leaks_reported: int = 0
    total_challenges_completed: int = 0
    top_savers: list[TopSaver] = Field(default_factory=list)
