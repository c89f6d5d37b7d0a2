"""
FastAPI application for the NHL prop forecast & validation engine
Includes REST API and the scheduled availability refresh
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import os

from backend.auth import verify_api_key, verify_admin_api_key
from backend.core.records import OutcomeType
from backend.services.classification import summarize_bets
from backend.services.forecast import ForecastEngine, get_forecast_engine
from backend.schemas import (
    BetVerdictOut,
    EvaluateBetIn,
    ForecastOut,
    ForecastsResponse,
    GameStatusOut,
    RefreshResponse,
    ScopeStatusOut,
    SlateBetsResponse,
    SlateIn,
    StatusOverrideIn,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0"
AVAILABILITY_REFRESH_HOURS = int(os.getenv("AVAILABILITY_REFRESH_HOURS", "2"))

# Scheduler instance
scheduler = BackgroundScheduler()


def get_engine() -> ForecastEngine:
    return get_forecast_engine()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting NHL prop engine")

    scheduler.add_job(
        _refresh_availability_job,
        IntervalTrigger(hours=AVAILABILITY_REFRESH_HOURS),
        id="refresh_availability",
        name="Injury / Market Availability Refresh",
        replace_existing=True,
        next_run_time=datetime.now(),
    )
    scheduler.start()
    logger.info("Scheduler started: availability refresh every %dh", AVAILABILITY_REFRESH_HOURS)

    yield

    logger.info("Shutting down NHL prop engine")
    scheduler.shutdown()


app = FastAPI(
    title="NHL Prop Engine",
    description="NHL player prop forecasts with injury/market availability reconciliation",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _refresh_availability_job():
    """Reconcile injuries against the prop market, every 2 hours."""
    try:
        summary = get_forecast_engine().refresh_availability(force=True)
        logger.info("Availability refresh: %s", summary)
    except Exception as exc:
        logger.error("Availability refresh job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "app": "NHL Prop Engine",
        "version": APP_VERSION,
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
async def health_check():
    health = {"status": "healthy", "scheduler": "running"}
    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"
    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS
# ============================================================================

@app.post("/api/forecasts/{outcome_type}", response_model=ForecastsResponse)
def create_forecasts(
    outcome_type: OutcomeType,
    slate: SlateIn,
    user: str = Depends(verify_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Forecast every eligible, available player on the posted slate."""
    forecasts = engine.forecast(outcome_type, slate.to_slate())
    return ForecastsResponse(
        outcome_type=outcome_type,
        count=len(forecasts),
        forecasts=[ForecastOut.from_forecast(f) for f in forecasts],
    )


@app.post("/api/bets/evaluate", response_model=BetVerdictOut)
def evaluate_bet(
    payload: EvaluateBetIn,
    user: str = Depends(verify_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Forecast one player and classify the forecast against a quote."""
    forecasts = engine.forecast(payload.outcome_type, [payload.entry.to_entry()])
    if not forecasts:
        raise HTTPException(
            status_code=404,
            detail=f"No {payload.outcome_type.value} forecast for {payload.entry.name} "
                   "(unavailable or below the quality filter)",
        )
    quote = payload.quote.to_quote() if payload.quote else None
    try:
        verdict = engine.evaluate_bet(forecasts[0], quote)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return BetVerdictOut.from_verdict(verdict)


@app.post("/api/bets/slate/{outcome_type}", response_model=SlateBetsResponse)
def evaluate_slate(
    outcome_type: OutcomeType,
    slate: SlateIn,
    actionable_only: bool = False,
    bankroll: Optional[float] = Query(None, gt=0, description="Adds dollar stakes to each verdict"),
    user: str = Depends(verify_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Forecast a slate and classify each player against the best listed price.

    The summary always covers the whole slate; ``actionable_only`` filters
    the verdict list only.
    """
    verdicts = engine.evaluate_slate(outcome_type, slate.to_slate())
    summary = summarize_bets(verdicts)
    if actionable_only:
        verdicts = [v for v in verdicts if v.is_actionable]
    return SlateBetsResponse(
        outcome_type=outcome_type,
        summary=summary,
        verdicts=[BetVerdictOut.from_verdict(v, bankroll) for v in verdicts],
    )


@app.get("/api/games/{home}/{away}/adjustments", response_model=GameStatusOut)
def game_adjustments(
    home: str,
    away: str,
    home_back_to_back: bool = False,
    away_back_to_back: bool = False,
    user: str = Depends(verify_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Win probability, special teams and total adjustments for one game."""
    return engine.game_status(
        home.upper(),
        away.upper(),
        home_back_to_back=home_back_to_back,
        away_back_to_back=away_back_to_back,
    )


@app.get("/api/scopes/{scope}/status", response_model=ScopeStatusOut)
def scope_status(
    scope: str,
    user: str = Depends(verify_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Availability verdicts, impact breakdown and cache health for one team."""
    return engine.scope_status(scope.upper())


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/refresh-availability", response_model=RefreshResponse)
def refresh_availability(
    user: str = Depends(verify_admin_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Run a reconciliation cycle now (admin only)."""
    logger.info("Manual availability refresh triggered by %s", user)
    summary = engine.refresh_availability(force=True)
    return RefreshResponse(message="Availability refreshed", **summary)


@app.post("/admin/overrides", response_model=RefreshResponse)
def add_status_override(
    override: StatusOverrideIn,
    user: str = Depends(verify_admin_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Record a manual availability status and re-run reconciliation (admin only)."""
    logger.info("Manual override by %s: %s (%s) -> %s", user, override.name, override.scope, override.status.value)
    engine.injuries.add_manual_override(override.to_record())
    summary = engine.refresh_availability()
    return RefreshResponse(message="Override recorded", **summary)


@app.delete("/admin/overrides")
def clear_status_overrides(
    user: str = Depends(verify_admin_api_key),
    engine: ForecastEngine = Depends(get_engine),
):
    """Drop every manual override (admin only)."""
    engine.injuries.clear_manual_overrides()
    return {"message": "Overrides cleared"}


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_api_key)):
    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in scheduler.get_jobs()
    ]
    return {"running": scheduler.running, "jobs": jobs}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
