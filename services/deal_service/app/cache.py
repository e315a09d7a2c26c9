"""Short-lived Redis cache for deal display payloads."""

from __future__ import annotations

import json
import logging
from contextlib import suppress
from typing import Any

from services.common.cache import RedisType

from .metrics import DEAL_CACHE_EVENTS_TOTAL

_LOGGER = logging.getLogger(__name__)


class DealDisplayCache:
    """Caches the rendered display payload of a deal for ``ttl`` seconds.

    Entries may lag behind the stored counter by up to ``ttl``; reservations
    never read through this cache.
    """

    def __init__(self, redis: RedisType | None, *, ttl: int, key_prefix: str = "deal_display") -> None:
        self._redis = redis
        self._ttl = ttl
        self._key_prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return self._redis is not None and self._ttl > 0

    def _key(self, deal_id: int) -> str:
        return f"{self._key_prefix}:{deal_id}"

    async def get(self, deal_id: int) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        key = self._key(deal_id)
        try:
            cached = await self._redis.get(key)
        except Exception:
            _LOGGER.warning("Deal cache read failed for %s", key, exc_info=True)
            DEAL_CACHE_EVENTS_TOTAL.labels(event="error").inc()
            DEAL_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None
        if not cached:
            DEAL_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None
        try:
            payload = json.loads(cached)
        except json.JSONDecodeError:
            DEAL_CACHE_EVENTS_TOTAL.labels(event="decode_error").inc()
            with suppress(Exception):
                await self._redis.delete(key)
            DEAL_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None
        DEAL_CACHE_EVENTS_TOTAL.labels(event="hit").inc()
        return payload

    async def set(self, deal_id: int, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            await self._redis.set(self._key(deal_id), json.dumps(payload, default=str), ex=self._ttl)
        except Exception:
            _LOGGER.warning("Deal cache write failed for deal %s", deal_id, exc_info=True)
            DEAL_CACHE_EVENTS_TOTAL.labels(event="error").inc()
            return
        DEAL_CACHE_EVENTS_TOTAL.labels(event="write").inc()

    async def invalidate(self, deal_id: int) -> None:
        if not self.enabled:
            return
        try:
            await self._redis.delete(self._key(deal_id))
        except Exception:
            _LOGGER.warning("Deal cache invalidation failed for deal %s", deal_id, exc_info=True)
            DEAL_CACHE_EVENTS_TOTAL.labels(event="error").inc()
            return
        DEAL_CACHE_EVENTS_TOTAL.labels(event="invalidate").inc()
