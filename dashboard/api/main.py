"""
Revenue Signal Hub: API Server
=================================

Thin HTTP layer over the hub views. Collaborators (Salesforce connection,
admin settings, watchlist store, recommendation generator, stored call
signals) are created once at startup and kept on app.state.

Route groups:
  /api/health              - Health check
  /api/hub/ae/*            - AE hub: priority accounts, at-risk deals, metrics,
                             forecast, today's priorities, watchlist
  /api/hub/leader/*        - Sales leader dashboard and team forecast
  /api/hub/am/renewals     - AM renewal accounts
  /api/hub/csm/at-risk     - CSM at-risk customers
  /api/hub/admin/*         - Account tier overrides
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hub_engine.lib.circuit_breaker import CircuitBreaker
from hub_engine.lib.logger import setup_logger

load_dotenv()

logger = setup_logger(__name__)

VERSION = "1.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting Revenue Signal Hub...")

    from hub_engine.admin_config import AdminConfigStore
    from hub_engine.quota import QuotaResolver
    from hub_engine.recommendations import AIRecommendationGenerator
    from hub_engine.watchlist import SupabaseWatchlistStore
    from integrations.call_intelligence import StoredCallSignalSource
    from integrations.salesforce import SalesforceConnection

    app.state.salesforce = SalesforceConnection()
    status = "configured" if app.state.salesforce.is_configured else "not configured"
    logger.info("Salesforce connection: %s", status)

    app.state.admin_config = AdminConfigStore()
    app.state.watchlist = SupabaseWatchlistStore()
    app.state.quota_resolver = QuotaResolver(app.state.salesforce)
    app.state.call_signals = StoredCallSignalSource()
    app.state.recommender = AIRecommendationGenerator(os.getenv("AI_PROVIDER"))

    logger.info("Revenue Signal Hub ready")
    yield
    logger.info("Shutting down Revenue Signal Hub...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="Revenue Signal Hub",
    version=VERSION,
    description="Signal & forecast aggregation for AE, AM, CSM and sales leader hubs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Include Routers ──────────────────────────────────────────

from dashboard.api.routers.hubs import router as hubs_router
from dashboard.api.routers.watchlist import router as watchlist_router

app.include_router(hubs_router)
app.include_router(watchlist_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with integration and circuit status."""
    salesforce = getattr(app.state, "salesforce", None)
    return {
        "status": "healthy",
        "service": "Revenue Signal Hub",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "salesforce": salesforce.get_status() if salesforce else None,
        },
        "circuits": CircuitBreaker.all_status(),
    }
