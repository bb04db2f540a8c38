"""
leakage.py — Photo leak report routes.

Routes:
  POST /api/v1/leakage/reports  — submit a photo for verification (10/minute)
  GET  /api/v1/leakage/reports  — the current user's reports, newest first

HOW THE DATA FLOWS
──────────────────
1. The frontend reads the chosen file with FileReader.readAsDataURL() and
   sends the base64 part plus the browser's MIME type.
2. The body is decoded here; a bad base64 string is a ValidationError.
3. VerificationPipeline.submit() validates, uploads, asks for a verdict,
   applies the 0.7 confidence policy and, on accept, pays out 50 points.
4. The response says "verified" (with the report, new stats, unlocked
   achievements) or "rejected" (with the verdict's description as reason).

Upload / verdict failures surface as 502 with retryable=true via the
HydroZenError handler in main.py.
"""

import base64
import binascii
import logging

from fastapi import APIRouter, Depends, Query, Request

from hydrozen.core.errors import ValidationError
from hydrozen.core.rate_limit import SUBMISSION_RATE, limiter
from hydrozen.core.security import CurrentUserId
from hydrozen.models.leakage import (
    ImageUpload,
    LeakImageSubmission,
    ReportListResponse,
    SubmissionResponse,
)
from hydrozen.routes.deps import get_ledger, get_pipeline
from hydrozen.services.ledger import IncentiveLedger
from hydrozen.services.verification import VerificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/leakage", tags=["leakage"])


def _decode_image(payload: LeakImageSubmission) -> ImageUpload:
    encoded = payload.image_b64
    # Accept a full data: URL as well as the bare base64 part
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("image_b64 is not valid base64") from exc
    return ImageUpload(filename=payload.filename, mime_type=payload.mime_type, data=data)


@router.post("/reports", response_model=SubmissionResponse, status_code=200)
@limiter.limit(SUBMISSION_RATE)
async def submit_report(
    request: Request,
    payload: LeakImageSubmission,
    user_id: CurrentUserId,
    pipeline: VerificationPipeline = Depends(get_pipeline),
):
    """Verify a leak photo and reward the reporter if it passes."""
    image = _decode_image(payload)
    return await pipeline.submit(user_id, image)


@router.get("/reports", response_model=ReportListResponse)
async def list_reports(
    user_id: CurrentUserId,
    limit: int = Query(default=20, ge=1, le=100),
    ledger: IncentiveLedger = Depends(get_ledger),
):
    items = await ledger.list_reports(user_id, limit=limit)
    return ReportListResponse(items=items, total=len(items))
