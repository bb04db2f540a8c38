"""
deps.py — FastAPI dependencies that assemble core components per request.

Long-lived clients (HTTP pool, Gemini, telemetry store, object store,
notifier) are built once in main.lifespan and hung on app.state. The
components that hold no state of their own (ledger, pipeline, escalator,
community board) are cheap and are built here for each request around
those clients.

Tests swap any of these with app.dependency_overrides.
"""

from fastapi import Depends, HTTPException, Request

from hydrozen.core.config import settings
from hydrozen.core.database import get_db
from hydrozen.services.challenges import CommunityBoard
from hydrozen.services.escalation import AlertEscalator
from hydrozen.services.ledger import IncentiveLedger
from hydrozen.services.telemetry_store import TelemetryStore
from hydrozen.services.verification import VerificationPipeline


def _require_db(db=Depends(get_db)):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return db


def get_ledger(db=Depends(_require_db)) -> IncentiveLedger:
    return IncentiveLedger(db)


def get_community_board(ledger: IncentiveLedger = Depends(get_ledger)) -> CommunityBoard:
    return CommunityBoard(ledger.db, ledger)


def get_pipeline(request: Request, ledger: IncentiveLedger = Depends(get_ledger)) -> VerificationPipeline:
    state = request.app.state
    return VerificationPipeline(
        store=state.object_store,
        verifier=state.verdict_client,
        ledger=ledger,
        max_image_bytes=settings.max_image_bytes,
    )


def get_telemetry_store(request: Request) -> TelemetryStore:
    return request.app.state.telemetry_store


def get_escalator(request: Request, db=Depends(_require_db)) -> AlertEscalator:
    return AlertEscalator(request.app.state.notifier, db)
