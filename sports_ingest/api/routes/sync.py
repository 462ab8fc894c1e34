"""Sync API routes for ingestion health and manual triggers.

Provides endpoints for:
- Orchestrator and provider status
- Request budget usage
- Manual sync triggers (all sports, one sport, live scores)
- Default market generation
- Recent sync log rows
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from sports_ingest.core.config import settings
from sports_ingest.core.database import get_db
from sports_ingest.core.errors import BudgetExhausted, IngestionError
from sports_ingest.core.rate_limit import limiter
from sports_ingest.core.scheduler import get_scheduler
from sports_ingest.models.canonical import SportKind
from sports_ingest.services.sync.markets import DEFAULT_MARKET_LIMIT, MarketGenerator
from sports_ingest.services.sync.orchestrator import SYNC_TYPES, ETLOrchestrator
from sports_ingest.services.sync.store import RelationalStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

SYNC_TYPE_PATTERN = f"^({'|'.join(SYNC_TYPES)})$"


def get_orchestrator(request: Request) -> ETLOrchestrator:
    """Dependency to get the application's orchestrator."""
    return request.app.state.orchestrator


def _parse_sport(sport: str) -> SportKind:
    try:
        return SportKind.parse(sport)
    except ValueError:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown sport '{sport}'. Supported: {', '.join(s.value for s in SportKind)}",
        )


def _raise_for(error: IngestionError) -> None:
    """Translate an ingestion error into an HTTP error without leaking internals."""
    if isinstance(error, BudgetExhausted):
        raise HTTPException(status_code=429, detail=str(error))
    raise HTTPException(status_code=503, detail=str(error))


@router.get("/status")
async def get_sync_status(
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Get the ingestion health dashboard.

    Returns:
    - Health status (healthy, degraded, unhealthy)
    - Whether a cycle is running and the last cycle's result
    - Provider budget usage and circuit breaker states
    - Scheduled jobs
    """
    status = orchestrator.get_status()
    scheduler = get_scheduler()
    status["scheduler"] = {
        "running": bool(scheduler and scheduler.running),
        "jobs": scheduler.get_jobs() if scheduler else [],
    }
    return status


@router.get("/usage")
async def get_usage(
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Request budget usage per provider."""
    return orchestrator.get_usage()


@router.get("/logs")
async def get_sync_logs(
    limit: int = Query(20, ge=1, le=200),
    sport: Optional[str] = Query(None, description="Filter by sport"),
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Most recent sync log rows."""
    if sport:
        sport = _parse_sport(sport).value
    logs = orchestrator.get_sync_logs(limit=limit, sport=sport)
    return {"count": len(logs), "logs": logs}


@router.post("/run")
@limiter.limit(settings.SYNC_TRIGGER_RATE_LIMIT)
async def trigger_sync_all(
    request: Request,
    background_tasks: BackgroundTasks,
    sync_type: str = Query("games", pattern=SYNC_TYPE_PATTERN),
    background: bool = Query(False, description="Return immediately and run the cycle in the background"),
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Manually trigger a cycle over every sport.

    A cycle already in progress makes this return a skipped result.

    Args:
        sync_type: leagues, games or live
        background: Run in the background instead of waiting for the result
    """
    if background:
        background_tasks.add_task(orchestrator.sync_all_sports, sync_type)
        return {"status": "started", "sync_type": sync_type}

    try:
        result = await orchestrator.sync_all_sports(sync_type)
    except IngestionError as e:
        logger.error(f"Manual {sync_type} sync failed: {e}")
        _raise_for(e)
    return result.to_dict()


@router.post("/sport/{sport}")
@limiter.limit(settings.SYNC_TRIGGER_RATE_LIMIT)
async def trigger_sync_sport(
    request: Request,
    sport: str,
    sync_type: str = Query("games", pattern=SYNC_TYPE_PATTERN),
    league: Optional[str] = Query(None, description="API-Sports league id (games only)"),
    season: Optional[str] = Query(None, description="API-Sports season (games only)"),
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Manually trigger a sync for one sport.

    Args:
        sport: Sport name (football, nba, ...)
        sync_type: leagues, games or live
        league: Restrict the API-Sports games fetch to one league
        season: Season for the league filter
    """
    kind = _parse_sport(sport)
    options = {}
    if sync_type == "games":
        options = {"league": league, "season": season}

    try:
        result = await orchestrator.sync_sport(kind, sync_type, **options)
    except IngestionError as e:
        logger.error(f"Manual {sync_type} sync for {kind.value} failed: {e}")
        _raise_for(e)
    return result.to_dict()


@router.post("/live")
@limiter.limit(settings.SYNC_TRIGGER_RATE_LIMIT)
async def trigger_sync_live(
    request: Request,
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Manually refresh live scores for every sport."""
    try:
        result = await orchestrator.sync_live_scores_all_sports()
    except IngestionError as e:
        logger.error(f"Manual live sync failed: {e}")
        _raise_for(e)
    return result.to_dict()


@router.post("/markets/generate")
@limiter.limit(settings.SYNC_TRIGGER_RATE_LIMIT)
async def trigger_market_generation(
    request: Request,
    limit: int = Query(DEFAULT_MARKET_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
    orchestrator: ETLOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Create simulated default markets for scheduled events that have none."""
    generator = MarketGenerator(RelationalStore(db), orchestrator.dispatcher)
    try:
        generated = await generator.generate_default_markets(limit)
    except IngestionError as e:
        _raise_for(e)
    return {"generated": generated}
