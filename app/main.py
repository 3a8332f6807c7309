"""
FastAPI application: pipeline scoring API with database pool lifecycle.
"""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.pipeline_scoring.api import cron_router
from app.features.pipeline_scoring.api import router as pipeline_router
from app.features.pipeline_scoring.services import recalculation_dispatcher, recalculation_service
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup; drain background work and close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Application shutting down", pending_recalculations=recalculation_dispatcher.pending)

    shutdown_errors = []

    # Let in-flight fire-and-forget recalculations finish before the pool goes away
    try:
        await recalculation_dispatcher.drain(timeout=10.0)
        await asyncio.wait_for(recalculation_service.wait_for_writes(), timeout=10.0)
    except Exception as e:
        logger.error("Error draining background recalculations", error=str(e))
        shutdown_errors.append(f"Recalculations: {e}")

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Pipeline Scoring",
    description="Deal health scoring, batch recalculation and archive analytics",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(pipeline_router)
app.include_router(cron_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
