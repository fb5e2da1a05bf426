# storefront/utils/retry.py
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)
import redis


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


def _not_acquired(result: bool) -> bool:
    return not result


def wait_for_lock(timeout: float):
    """Polls a non-blocking acquire until it returns True or the timeout passes.

    The wrapped function returns False after the last attempt; callers decide
    what that means.
    """
    return retry(
        stop=stop_after_delay(timeout),
        wait=wait_exponential(multiplier=0.01, min=0.01, max=0.2),
        retry=retry_if_result(_not_acquired),
        retry_error_callback=lambda state: False,
    )
