from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from circadian.api.router import api_router
from circadian.config import get_config, get_settings
from circadian.core.clock import get_clock
from circadian.core.logging import get_logger, setup_logging
from circadian.core.rate_limit import limiter, rate_limit_exceeded_handler
from circadian.core.scheduler import start_scheduler, stop_scheduler
from circadian.pipeline.registry import get_registry

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    clock = get_clock()  # fails startup on an unknown reference timezone
    config = get_config()
    registry = get_registry()

    unregistered = [s.session_type for s in config.schedule.sessions if s.session_type not in registry]
    if unregistered:
        logger.bind(session_types=unregistered).error("scheduled_sessions_without_pipeline")

    logger.bind(
        timezone=clock.timezone_name,
        sessions=len(config.schedule.sessions),
        pipelines=len(registry.list_available()),
    ).info("app_starting")

    await start_scheduler()
    yield
    # Shutdown
    await stop_scheduler()


app = FastAPI(
    title="Circadian",
    description="Scheduled thinking sessions for an AI companion",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# Rate limiting for manual runs
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]

# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
