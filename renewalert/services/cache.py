import json
import logging

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis

from renewalert.schemas.subscription import Plan, Platform, SubscriptionState

logger = logging.getLogger(__name__)

_plans_adapter = TypeAdapter(list[Plan])


class SubscriptionCache:
    """Last known subscription state, kept for cold-start display.

    The record is one serialized value so a sync either lands whole or not at all.
    """

    def __init__(self, redis: Redis, prefix: str = "renewalert"):
        self.redis = redis
        self.prefix = prefix

    def _key(self, user_id: str) -> str:
        return f"{self.prefix}:sub:{user_id}"

    async def load(self, user_id: str) -> SubscriptionState | None:
        raw = await self.redis.get(self._key(user_id))
        if not raw:
            return None
        try:
            return SubscriptionState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable subscription cache for %s: %s", user_id, exc)
            return None

    async def store(self, user_id: str, state: SubscriptionState) -> None:
        await self.redis.set(self._key(user_id), state.model_dump_json())

    async def clear(self, user_id: str) -> None:
        await self.redis.delete(self._key(user_id))


class PlanCatalogCache:
    """Plan catalog fallback for when the backend can't be reached."""

    def __init__(self, redis: Redis, prefix: str = "renewalert", ttl_seconds: int = 60 * 60 * 24 * 7):
        self.redis = redis
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, platform: Platform | str) -> str:
        return f"{self.prefix}:plans:{Platform(platform).value}"

    async def load(self, platform: Platform | str) -> list[Plan] | None:
        raw = await self.redis.get(self._key(platform))
        if not raw:
            return None
        try:
            return _plans_adapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable plan cache: %s", exc)
            return None

    async def store(self, platform: Platform | str, plans: list[Plan]) -> None:
        payload = json.dumps([p.model_dump(mode="json") for p in plans])
        await self.redis.set(self._key(platform), payload, ex=self.ttl_seconds)
