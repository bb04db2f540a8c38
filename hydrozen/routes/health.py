"""
Health check endpoint.

Reports DB connectivity and which external collaborators are running on
canned data, so a deployment that silently fell back to mock mode is
visible from the outside.
"""

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from hydrozen import __version__
from hydrozen.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    status: str  # "ok" while the process is alive
    version: str
    database: str  # "connected" | "disconnected"
    environment: str
    mock_services: list[str] = Field(default_factory=list)


def _mock_services(state) -> list[str]:
    services = {
        "telemetry": getattr(state, "telemetry_store", None),
        "storage": getattr(state, "object_store", None),
        "notifications": getattr(state, "notifier", None),
    }
    verdict_client = getattr(state, "verdict_client", None)
    services["verification"] = getattr(verdict_client, "gemini", None)
    return sorted(name for name, svc in services.items() if getattr(svc, "mock_mode", False))


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check(request: Request) -> HealthResponse:
    """HTTP 200 even when the database is disconnected."""
    db_status = "disconnected"
    db_client = getattr(request.app.state, "db_client", None)
    try:
        if db_client is not None and await db_client.ping():
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=__version__,
        database=db_status,
        environment=settings.environment,
        mock_services=_mock_services(request.app.state),
    )
