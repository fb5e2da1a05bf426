# storefront/services/lock_service.py
import threading
import uuid
from contextlib import contextmanager
from typing import Iterator

import redis

from storefront.domain.errors import BusinessError, ErrorCode
from storefront.utils.logging import get_logger
from storefront.utils.retry import redis_retry, wait_for_lock
from storefront.utils.settings import LOCK_BACKEND, LOCK_TIMEOUT_SECONDS, LOCK_TTL_SECONDS, REDIS_URL

logger = get_logger(__name__)

#LUA porownaj i usun, atomowo
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


def cart_lock_key(customer_id: str) -> str:
    return f"cart:{customer_id}:lock"


class BaseLockService:
    """
    Serializacja mutacji koszyka:
    - hold(key) czeka max `timeout` sekund na lock
    - po timeout BusinessError(CART_LOCKED)
    """

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout

    def try_acquire(self, key: str, token: str) -> bool:
        raise NotImplementedError

    def release(self, key: str, token: str) -> bool:
        raise NotImplementedError

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        token = str(uuid.uuid4())
        acquired = wait_for_lock(self.timeout)(self.try_acquire)(key, token)
        if not acquired:
            logger.warning("Lock wait timed out", extra={"lock_key": key, "timeout": self.timeout})
            raise BusinessError("Cart is being modified by another request, try again", ErrorCode.CART_LOCKED)
        try:
            yield token
        finally:
            self.release(key, token)


class LocalLockService(BaseLockService):
    """In-process locks; enough when a single instance serves a customer."""

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self._guard = threading.Lock()
        self._owners: dict[str, str] = {}

    def try_acquire(self, key: str, token: str) -> bool:
        with self._guard:
            if key in self._owners:
                return False
            self._owners[key] = token
            return True

    def release(self, key: str, token: str) -> bool:
        with self._guard:
            if self._owners.get(key) != token:
                return False
            del self._owners[key]
            return True


class LockService(BaseLockService):
    """Redis lock: SET NX EX, released by compare-and-delete."""

    def __init__(
        self,
        url: str | None = None,
        ttl: int = LOCK_TTL_SECONDS,
        timeout: float = LOCK_TIMEOUT_SECONDS,
        client: redis.Redis | None = None,
    ):
        super().__init__(timeout)
        self.ttl = ttl
        self.redis = client or redis.Redis.from_url(url or REDIS_URL, decode_responses=True)

    @redis_retry()
    def try_acquire(self, key: str, token: str) -> bool:
        #SET cart:<id>:lock <token> NX EX <ttl>
        return bool(self.redis.set(name=key, value=token, nx=True, ex=self.ttl))

    @redis_retry()
    def release(self, key: str, token: str) -> bool:
        res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        if not res:
            logger.warning("Lock expired before release", extra={"lock_key": key})
        return bool(res)


_local_locks = LocalLockService()


def get_lock_service() -> BaseLockService:
    if LOCK_BACKEND == "redis":
        return LockService()
    return _local_locks
