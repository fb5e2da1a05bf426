# storefront/services/cache_bus.py
import json
import uuid

import redis

from storefront.services.cache import TTLCache
from storefront.utils.logging import get_logger
from storefront.utils.retry import redis_retry
from storefront.utils.settings import CACHE_INVALIDATION_CHANNEL, REDIS_URL

logger = get_logger(__name__)


class CacheInvalidationBus:
    """
    Rozglasza invalidacje TTLCache miedzy instancjami przez Redis pub/sub.

    Each instance publishes its local invalidations and applies the ones it
    receives from peers (without re-broadcasting them).
    """

    def __init__(self, client: redis.Redis, channel: str):
        self.redis = client
        self.channel = channel
        self.instance_id = str(uuid.uuid4())
        self._caches: dict[str, TTLCache] = {}
        self._thread = None

    @classmethod
    def from_settings(cls) -> "CacheInvalidationBus | None":
        if not CACHE_INVALIDATION_CHANNEL:
            return None
        client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        return cls(client, CACHE_INVALIDATION_CHANNEL)

    def attach(self, cache: TTLCache) -> None:
        self._caches[cache.name] = cache
        cache.on_invalidate = lambda op, arg: self.publish(cache.name, op, arg)

    @redis_retry()
    def publish(self, cache_name: str, op: str, arg: str | None) -> None:
        message = json.dumps({"origin": self.instance_id, "cache": cache_name, "op": op, "arg": arg})
        self.redis.publish(self.channel, message)

    def handle(self, raw: dict) -> None:
        if raw.get("type") != "message":
            return
        try:
            payload = json.loads(raw["data"])
        except (TypeError, ValueError):
            logger.warning("Malformed invalidation message", extra={"channel": self.channel})
            return
        if payload.get("origin") == self.instance_id:
            return
        cache = self._caches.get(payload.get("cache"))
        if cache is None:
            return

        op, arg = payload.get("op"), payload.get("arg")
        if op == "clear":
            cache.clear(broadcast=False)
        elif op == "match" and arg:
            cache.invalidate_matching(arg, broadcast=False)
        elif op == "delete" and arg:
            cache.delete(arg, broadcast=False)
        logger.debug("Applied remote cache invalidation", extra={"cache": cache.name, "op": op})

    def start(self) -> None:
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{self.channel: self.handle})
        self._thread = pubsub.run_in_thread(sleep_time=0.5, daemon=True)
        logger.info("Cache invalidation listener started", extra={"channel": self.channel})

    def stop(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
