# app/main.py
"""
FastAPI entry point: database pool, optional Redis and the interview
ingest poller are managed by the lifespan.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.interview_ingest.api.router import router as interview_sync_router
from app.features.interview_ingest.container import build_container
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        redis_client = None
        if settings.REDIS_URL:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")
            redis_client = fast_redis

        container = build_container(redis_client=redis_client)
        await container.poison_handler.load_persisted()
        app.state.interview_ingest = container
        startup_tasks.append("interview_ingest")

        if settings.INGEST_AUTOSTART and settings.ELEVENLABS_API_KEY:
            await container.poller.start()
            startup_tasks.append("poller")
        else:
            logger.warning(
                "Interview poller not started",
                autostart=settings.INGEST_AUTOSTART,
                has_api_key=bool(settings.ELEVENLABS_API_KEY),
            )

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "interview_ingest" in startup_tasks:
            try:
                await app.state.interview_ingest.aclose()
            except Exception as cleanup_error:
                logger.error("Error cleaning up interview ingest", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        logger.info("Stopping interview ingest")
        await app.state.interview_ingest.aclose()
    except Exception as e:
        logger.error("Error stopping interview ingest", error=str(e))
        shutdown_errors.append(f"Interview ingest: {e}")

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Interview Ingest",
    description="Ingests ElevenLabs interview conversations into the candidate pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(interview_sync_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
