"""
leakage.py — Pydantic models for the image verification pipeline.

LeakImageSubmission — what the client sends (base64 image + MIME type)
ImageUpload         — decoded image handed to the pipeline
ImageVerdict        — validated output of the multimodal classifier
LeakReport          — stored report (verified image or escalated alert)
PolicyRejection     — negative outcome: processed fine, below threshold
SubmissionResponse  — body of POST /api/v1/leakage/reports
LeakRewardResult    — what IncentiveLedger.apply_leak_reward changed
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from hydrozen.models.ledger import Achievement, UserStats

ReportStatus = Literal["pending", "verified", "rejected"]


# ── Request ───────────────────────────────────────────────────────────────────

class LeakImageSubmission(BaseModel):
    """Payload for POST /api/v1/leakage/reports."""

    image_b64: str = Field(..., min_length=1, description="Base64-encoded image data (JPEG/PNG/WebP)")
    mime_type: str = Field(..., description="MIME type reported by the browser, e.g. image/jpeg")
    filename: str  = Field(default="leak.jpg", max_length=255)


class ImageUpload(BaseModel):
    """Decoded image as it enters the pipeline."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


# ── Verdict ───────────────────────────────────────────────────────────────────

class ImageVerdict(BaseModel):
    """Multimodal classifier verdict, validated at the boundary."""

    is_leakage: bool
    confidence: float = Field(ge=0.0, le=1.0)
    description: str
    # True when the model ignored the JSON contract and the keyword scan decided
    degraded: bool = False


# ── Report ────────────────────────────────────────────────────────────────────

class LeakReport(BaseModel):
    id: str
    user_id: Optional[str] = None
    image_url: Optional[str] = None
    status: ReportStatus
    verification_confidence: Optional[float] = None
    verification_description: Optional[str] = None
    points_awarded: int = 0
    # Escalated sensor alerts carry these instead of an image
    location: Optional[str] = None
    severity: Optional[str] = None
    difference: Optional[float] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class ReportListResponse(BaseModel):
    items: list[LeakReport]
    total: int


# ── Outcomes ──────────────────────────────────────────────────────────────────

class PolicyRejection(BaseModel):
    """The image was processed but did not meet the acceptance policy."""

    reason: str
    verdict: ImageVerdict


class LeakRewardResult(BaseModel):
    """The stored report plus everything the reward changed."""

    report: LeakReport
    stats: UserStats
    unlocked: list[Achievement] = Field(default_factory=list)
    # Secondary writes that failed after the stats update (logged, not rolled back)
    inconsistencies: list[str] = Field(default_factory=list)

    @property
    def report_id(self) -> str:
        return self.report.id


class SubmissionResponse(BaseModel):
    outcome: Literal["verified", "rejected"]
    report: Optional[LeakReport] = None
    reason: Optional[str] = None
    verdict: ImageVerdict
    stats: Optional[UserStats] = None
    unlocked: list[Achievement] = Field(default_factory=list)
