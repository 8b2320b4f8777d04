"""
Redis snapshot of poison records so poisoned conversations survive restarts.
"""

import json
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

POISON_SNAPSHOT_KEY = "interview_ingest:poison_records"


class RedisPoisonPersistence:
    """Stores the whole poison table as one JSON document."""

    def __init__(self, redis_client: FastRedisClient, key: str = POISON_SNAPSHOT_KEY):
        self.redis = redis_client
        self.key = key

    async def load(self) -> list[dict[str, Any]]:
        raw = await self.redis.get(self.key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Poison snapshot is not valid JSON", key=self.key, error=str(e))
            return []
        if not isinstance(records, list):
            logger.error("Poison snapshot has unexpected shape", key=self.key)
            return []
        return records

    async def save(self, records: list[dict[str, Any]]) -> bool:
        if not records:
            await self.redis.delete(self.key)
            return True
        saved = await self.redis.set_with_ttl(self.key, json.dumps(records))
        if not saved:
            logger.warning("Poison snapshot not saved", key=self.key, count=len(records))
        return saved
