import json
from datetime import date
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from playlink.settings import REDIS_URL

_redis: Redis | None = None
SLOTS_TTL = 60  # 1 minute


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _slots_key(venue_id: UUID, day: date, sport_id: int | None = None) -> str:
    return f"slots:{venue_id}:{day.isoformat()}:{sport_id if sport_id is not None else '*'}"


async def get_slots_cache(venue_id: UUID, day: date, sport_id: int | None = None) -> list | None:
    try:
        data = await get_redis().get(_slots_key(venue_id, day, sport_id))
        return json.loads(data) if data else None
    except Exception:
        logger.warning("Redis get failed, skipping slots cache", exc_info=True)
        return None


async def set_slots_cache(
    venue_id: UUID, day: date, sport_id: int | None, slots: list
) -> None:
    try:
        await get_redis().setex(
            _slots_key(venue_id, day, sport_id), SLOTS_TTL, json.dumps(slots)
        )
    except Exception:
        logger.warning("Redis set failed, skipping slots cache", exc_info=True)


async def invalidate_slots_cache(venue_id: UUID, day: date | None = None) -> None:
    """Drop every sport variant cached for a venue-local day, or for all days."""
    pattern = f"slots:{venue_id}:{day.isoformat() if day else '*'}:*"
    try:
        redis = get_redis()
        keys = [k async for k in redis.scan_iter(match=pattern)]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.warning("Redis invalidate failed for slots cache", exc_info=True)
