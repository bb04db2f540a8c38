"""
HydroZen API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups, and owns
the lifecycle of every external client (MongoDB, HTTP pool, Gemini,
telemetry store, object store, email relay).

Run:
    uvicorn hydrozen.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hydrozen import __version__
from hydrozen.ai.gemini_client import GeminiClient
from hydrozen.ai.leak_verifier import ImageVerdictClient
from hydrozen.core.config import settings
from hydrozen.core.database import build_database_client
from hydrozen.core.errors import HydroZenError
from hydrozen.core.rate_limit import limiter
from hydrozen.routes.community import router as community_router
from hydrozen.routes.health import router as health_router
from hydrozen.routes.leakage import router as leakage_router
from hydrozen.routes.rewards import router as rewards_router
from hydrozen.routes.telemetry import router as telemetry_router
from hydrozen.services.notifier import Notifier
from hydrozen.services.object_store import ObjectStore
from hydrozen.services.telemetry_store import NODE_A, NODE_B, TelemetryStore

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Construct every external client on startup, close them on shutdown.

    Nothing is created at import time, so tests can set app.state directly
    or override the route dependencies.
    """
    logger.info("Starting HydroZen API (env: %s)", settings.environment)

    db_client = build_database_client()
    await db_client.connect()
    http = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
    gemini = GeminiClient()

    app.state.db_client = db_client
    app.state.http = http
    app.state.telemetry_store = TelemetryStore(
        http,
        base_url=settings.telemetry_base_url,
        node_paths={
            NODE_A: settings.telemetry_node_a_path,
            NODE_B: settings.telemetry_node_b_path,
        },
        mock_mode=settings.telemetry_mock_mode,
    )
    app.state.object_store = ObjectStore(
        http,
        bucket=settings.storage_bucket,
        prefix=settings.storage_prefix,
        mock_mode=settings.storage_mock_mode,
    )
    app.state.verdict_client = ImageVerdictClient(
        gemini, http, timeout=settings.verdict_timeout_seconds
    )
    app.state.notifier = Notifier(
        http,
        webhook_url=settings.notification_webhook_url,
        recipient=settings.maintenance_email,
        mock_mode=settings.notification_mock_mode,
    )
    yield
    logger.info("Shutting down HydroZen API")
    await http.aclose()
    await db_client.close()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="HydroZen API",
    description=(
        "Leak anomaly detection, photo leak verification and water-saving "
        "incentive ledger."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Error taxonomy → HTTP ─────────────────────────────────────────────────────
@app.exception_handler(HydroZenError)
async def hydrozen_error_handler(request: Request, exc: HydroZenError) -> JSONResponse:
    if exc.retryable:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(telemetry_router)
app.include_router(leakage_router)
app.include_router(rewards_router)
app.include_router(community_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "HydroZen API",
        "version": __version__,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
