"""
Main FastAPI application for the sports ingestion service.

Wires the provider clients (each with its own rate governor and circuit
breaker), the event bus and event store, the ETL orchestrator, the scheduler
and the WebSocket fan-out gateway.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sports_ingest.api.routes import sync
from sports_ingest.core.config import Settings, settings
from sports_ingest.core.database import SessionLocal, init_db
from sports_ingest.core.logging import configure_logging, get_logger
from sports_ingest.core.middleware import CorrelationIdMiddleware
from sports_ingest.core.rate_limit import limiter
from sports_ingest.core.scheduler import start_scheduler, stop_scheduler
from sports_ingest.events.bus import EventBus, EventBusConfig
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.events.in_memory_bus import InMemoryEventBus
from sports_ingest.events.redis_bus import RedisEventBus
from sports_ingest.events.store import SqlEventStore
from sports_ingest.gateway import routes as gateway_routes
from sports_ingest.gateway.fanout import SportsGateway
from sports_ingest.services.clients.api_sports import APISportsClient
from sports_ingest.services.clients.base_client import RetryPolicy
from sports_ingest.services.clients.thesportsdb import TheSportsDBClient
from sports_ingest.services.core.circuit_breaker import create_breaker
from sports_ingest.services.core.rate_governor import RateGovernor
from sports_ingest.services.sync.orchestrator import ETLConfig, ETLOrchestrator

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)

GATEWAY_CONSUMER_GROUP = "sports-gateway"


@dataclass
class Services:
    """Long-lived components shared by the routes, the scheduler and the gateway."""
    event_bus: EventBus
    dispatcher: EventDispatcher
    orchestrator: ETLOrchestrator
    gateway: SportsGateway


def build_event_bus(config: Settings) -> EventBus:
    """In-memory bus, or the Redis Streams bus when ``EVENT_BUS_BACKEND=redis``."""
    bus_config = EventBusConfig(
        retry_on_failure=config.EVENT_BUS_RETRY_ON_FAILURE,
        max_retries=config.EVENT_BUS_MAX_RETRIES,
        retry_delay=config.EVENT_BUS_RETRY_DELAY,
        enable_event_store=config.EVENT_BUS_ENABLE_STORE,
    )
    event_store = SqlEventStore(SessionLocal) if config.EVENT_BUS_ENABLE_STORE else None

    if config.EVENT_BUS_BACKEND == "redis":
        logger.info(f"Using Redis Streams event bus on stream {config.EVENT_BUS_STREAM}")
        return RedisEventBus(
            redis_url=config.REDIS_URL,
            stream=config.EVENT_BUS_STREAM,
            config=bus_config,
            event_store=event_store,
        )
    logger.info("Using in-memory event bus")
    return InMemoryEventBus(bus_config, event_store)


def build_services(config: Settings = settings) -> Services:
    """Assemble the ingestion core from settings."""
    retry_policy = RetryPolicy(
        max_retries=config.HTTP_MAX_RETRIES,
        base_delay=config.HTTP_RETRY_BASE_DELAY,
        max_delay=config.HTTP_RETRY_MAX_DELAY,
    )

    def breaker(name: str):
        return create_breaker(
            name,
            fail_max=config.BREAKER_FAIL_MAX,
            success_threshold=config.BREAKER_SUCCESS_THRESHOLD,
            reset_timeout=config.BREAKER_RESET_TIMEOUT,
        )

    apisports = APISportsClient(
        api_key=config.APISPORTS_API_KEY,
        governor=RateGovernor(
            "apisports", config.APISPORTS_REQUESTS_PER_DAY, config.APISPORTS_REQUESTS_PER_MINUTE
        ),
        breaker=breaker("apisports"),
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_policy=retry_policy,
    )
    thesportsdb = TheSportsDBClient(
        api_key=config.THESPORTSDB_API_KEY,
        governor=RateGovernor(
            "thesportsdb", config.THESPORTSDB_REQUESTS_PER_DAY, config.THESPORTSDB_REQUESTS_PER_MINUTE
        ),
        breaker=breaker("thesportsdb"),
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_policy=retry_policy,
    )

    event_bus = build_event_bus(config)
    dispatcher = EventDispatcher(event_bus)
    orchestrator = ETLOrchestrator(
        SessionLocal,
        apisports=apisports,
        thesportsdb=thesportsdb,
        dispatcher=dispatcher,
        config=ETLConfig.from_settings(config),
    )
    gateway = SportsGateway()
    gateway.register(event_bus)
    return Services(event_bus=event_bus, dispatcher=dispatcher, orchestrator=orchestrator, gateway=gateway)


def create_app(services: Optional[Services] = None, config: Settings = settings) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built components (tests pass their own); built from
            settings when omitted
        config: Settings driving the lifespan (database init, scheduler)
    """
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}")
        init_db()

        if isinstance(services.event_bus, RedisEventBus):
            await services.event_bus.start_consuming(GATEWAY_CONSUMER_GROUP)
        if config.SCHEDULER_ENABLED:
            await start_scheduler(services.orchestrator, config.SCHEDULER_TIMEZONE)
            logger.info("Ingestion scheduler started")
        logger.info("Application started")

        yield

        logger.info("Shutting down application")
        await stop_scheduler()
        await services.orchestrator.cleanup()
        await services.event_bus.shutdown()

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        description="Sports data ingestion: provider sync, canonical storage and live fan-out",
        lifespan=lifespan,
    )
    app.state.limiter = limiter
    app.state.orchestrator = services.orchestrator
    app.state.event_bus = services.event_bus
    app.state.gateway = services.gateway
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(CorrelationIdMiddleware)

    # Must be set up before the routes are added
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(sync.router, prefix="/api/v1")
    app.include_router(gateway_routes.router)

    @app.get("/health")
    @limiter.limit("120/minute")
    async def health_check(request: Request):
        """Health check: orchestrator status, event bus and gateway."""
        status = services.orchestrator.get_status()
        bus_healthy = await services.event_bus.is_healthy()
        return {
            "status": status["health_status"] if bus_healthy else "unhealthy",
            "version": config.APP_VERSION,
            "components": {
                "providers": status["breakers"],
                "event_bus": {"healthy": bus_healthy, "backend": config.EVENT_BUS_BACKEND},
                "gateway": services.gateway.stats(),
                "is_syncing": status["is_syncing"],
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sports_ingest.main:app", host=settings.HOST, port=settings.PORT)
