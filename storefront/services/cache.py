# storefront/services/cache.py
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from storefront.utils.logging import get_logger

logger = get_logger(__name__)

V = TypeVar("V")

_MISSING = object()


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


def make_key(operation: str, params: Any = None) -> str:
    """Stable key for (operation, params): dict ordering does not matter."""
    return f"{operation}_{json.dumps(params or {}, sort_keys=True, default=str)}"


class TTLCache(Generic[V]):
    """
    Per-process key -> value map with expiry.

    - entries expire ttl seconds after they were set
    - expired entries are dropped lazily on read and on purge_expired()
    - invalidate_matching() drops every key containing a substring, which is
      how services evict all entries of one customer/entity
    """

    def __init__(
        self,
        ttl: float,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
        on_invalidate: Optional[Callable[[str, Optional[str]], None]] = None,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._data: dict[Hashable, _Entry[V]] = {}
        self._lock = threading.RLock()
        # hook do rozglaszania invalidacji na inne instancje (cache_bus)
        self.on_invalidate = on_invalidate

    def get(self, key: Hashable, default: Any = None) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            if entry.expires_at <= self._clock():
                del self._data[key]
                return default
            return entry.value

    def set(self, key: Hashable, value: V, ttl: float | None = None) -> None:
        with self._lock:
            self._data[key] = _Entry(value, self._clock() + (ttl or self.ttl))

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        """Read-through: returns the cached value or stores loader()'s result."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            logger.debug("Cache hit", extra={"cache": self.name, "key": str(key), "cache_hit": True})
            return value
        logger.debug("Cache miss", extra={"cache": self.name, "key": str(key), "cache_hit": False})
        value = loader()
        self.set(key, value)
        return value

    def delete(self, key: Hashable, broadcast: bool = True) -> bool:
        with self._lock:
            removed = self._data.pop(key, None) is not None
        if broadcast:
            self._notify("delete", str(key))
        return removed

    def invalidate_matching(self, fragment: str, broadcast: bool = True) -> int:
        with self._lock:
            keys = [k for k in self._data if fragment in str(k)]
            for k in keys:
                del self._data[k]
        if broadcast:
            self._notify("match", fragment)
        return len(keys)

    def clear(self, broadcast: bool = True) -> None:
        with self._lock:
            self._data.clear()
        if broadcast:
            self._notify("clear", None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._data.items() if e.expires_at <= now]
            for k in expired:
                del self._data[k]
        return len(expired)

    def keys(self) -> list[str]:
        self.purge_expired()
        with self._lock:
            return [str(k) for k in self._data]

    def stats(self) -> dict:
        keys = self.keys()
        return {"name": self.name, "size": len(keys), "keys": keys}

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def _notify(self, op: str, arg: Optional[str]) -> None:
        if self.on_invalidate is None:
            return
        try:
            self.on_invalidate(op, arg)
        except Exception as e:
            # lokalna invalidacja juz sie wykonala, peers dogonia po TTL
            logger.warning(
                "Cache invalidation broadcast failed",
                exc_info=e,
                extra={"cache": self.name, "op": op},
            )
