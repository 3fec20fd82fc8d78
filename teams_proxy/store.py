"""Redis-backed sink for computed team statistics."""

import redis.asyncio as redis
import structlog

from teams_proxy.config import settings
from teams_proxy.stats.schemas import TeamMessageStats

logger = structlog.get_logger()


class RedisClient:
    """Async Redis connection holder."""

    def __init__(self):
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await self.ping()
        logger.info("Redis connected")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client."""
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        return await self.client.ping()


# Singleton instance
redis_client = RedisClient()


class StatsStore:
    """Stores one TeamMessageStats JSON document per team."""

    def __init__(self, ttl_seconds: int | None = None):
        self.ttl = ttl_seconds or settings.stats_ttl_seconds

    def _stats_key(self, team_id: str) -> str:
        """Get Redis key for a team's stats."""
        return f"team-stats:{team_id}"

    async def save(self, stats: TeamMessageStats) -> None:
        await redis_client.client.set(
            self._stats_key(stats.team_id),
            stats.model_dump_json(),
            ex=self.ttl,
        )
        logger.debug("Stored team stats", team_id=stats.team_id, partial=stats.partial)

    async def get(self, team_id: str) -> TeamMessageStats | None:
        raw = await redis_client.client.get(self._stats_key(team_id))
        if raw is None:
            return None
        return TeamMessageStats.model_validate_json(raw)

    async def delete(self, team_id: str) -> None:
        await redis_client.client.delete(self._stats_key(team_id))


stats_store = StatsStore()
