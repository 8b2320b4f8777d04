"""
Resource setup shared by the interview ingest worker jobs.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.config import settings
from app.db.pool import db_pool
from app.features.interview_ingest.container import InterviewIngestContainer, build_container
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


@asynccontextmanager
async def worker_container() -> AsyncIterator[InterviewIngestContainer]:
    """Open the database pool (and Redis when configured) and yield a wired container."""
    setup_logging(log_level=settings.LOG_LEVEL)
    await db_pool.initialize()

    redis_client = None
    if settings.REDIS_URL:
        await fast_redis.initialize()
        redis_client = fast_redis

    container = build_container(redis_client=redis_client)
    await container.poison_handler.load_persisted()
    try:
        yield container
    finally:
        await container.aclose()
        if redis_client is not None:
            await fast_redis.close()
        await db_pool.close()
        logger.info("Worker resources released")
