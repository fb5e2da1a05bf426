"""Per-customer cart locks: in-process registry and the Redis SET NX / Lua release variant."""

from unittest.mock import MagicMock

import pytest

from storefront.domain.errors import BusinessError, ErrorCode
from storefront.services.lock_service import LocalLockService, LockService, cart_lock_key


class TestLocalLockService:
    def test_hold_acquires_and_releases(self):
        locks = LocalLockService(timeout=0.1)
        with locks.hold("k"):
            assert not locks.try_acquire("k", "other")
        assert locks.try_acquire("k", "other")

    def test_busy_lock_times_out_with_cart_locked(self):
        locks = LocalLockService(timeout=0.05)
        assert locks.try_acquire("k", "owner")
        with pytest.raises(BusinessError) as exc:
            with locks.hold("k"):
                pass
        assert exc.value.code == ErrorCode.CART_LOCKED

    def test_release_requires_matching_token(self):
        locks = LocalLockService()
        locks.try_acquire("k", "owner")
        assert not locks.release("k", "intruder")
        assert locks.release("k", "owner")

    def test_lock_released_when_body_raises(self):
        locks = LocalLockService(timeout=0.05)
        with pytest.raises(RuntimeError):
            with locks.hold("k"):
                raise RuntimeError("boom")
        assert locks.try_acquire("k", "next")


class TestRedisLockService:
    def test_acquire_uses_set_nx_with_ttl(self):
        client = MagicMock()
        client.set.return_value = True
        locks = LockService(client=client, ttl=30, timeout=0.1)

        assert locks.try_acquire(cart_lock_key("c1"), "tok")
        client.set.assert_called_once_with(name="cart:c1:lock", value="tok", nx=True, ex=30)

    def test_release_is_compare_and_delete(self):
        client = MagicMock()
        client.eval.return_value = 1
        locks = LockService(client=client, timeout=0.1)

        assert locks.release("cart:c1:lock", "tok")
        script, numkeys, key, token = client.eval.call_args.args
        assert "redis.call('GET', KEYS[1]) == ARGV[1]" in script
        assert (numkeys, key, token) == (1, "cart:c1:lock", "tok")

    def test_hold_times_out_when_key_taken(self):
        client = MagicMock()
        client.set.return_value = None
        locks = LockService(client=client, timeout=0.05)

        with pytest.raises(BusinessError) as exc:
            with locks.hold("cart:c1:lock"):
                pass
        assert exc.value.code == ErrorCode.CART_LOCKED
        client.eval.assert_not_called()
