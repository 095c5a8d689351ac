import logging
import math
import time
import uuid

import redis
from redis.exceptions import ConnectionError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window counter shared by every worker through Redis.

    Each accepted hit is a sorted-set member scored by its timestamp, so at most
    ``limit`` hits fall inside any ``window_seconds`` span, including spans that
    straddle a window boundary.
    """

    def __init__(self, client: redis.Redis, prefix: str = "job-starts", limit: int = 10, window_seconds: float = 1):
        self.prefix = prefix
        self.limit = limit
        self.window_seconds = window_seconds
        self.client = client

    def hit(self, key: str) -> bool:
        redis_key = f"{self.prefix}:{key}"
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.zremrangebyscore(redis_key, "-inf", now - self.window_seconds)
            pipe.zadd(redis_key, {member: now})
            pipe.zcard(redis_key)
            pipe.expire(redis_key, max(1, math.ceil(self.window_seconds * 2)))
            _, _, count, _ = pipe.execute()
            if count > self.limit:
                self.client.zrem(redis_key, member)
                return False
            return True
        except ConnectionError:
            return True

    def wait(self, key: str, poll_seconds: float = 0.05, max_wait_seconds: float = 30.0) -> float:
        """Block until a slot is free in the current window. Returns seconds waited."""
        started = time.monotonic()
        while not self.hit(key):
            waited = time.monotonic() - started
            if waited >= max_wait_seconds:
                logger.warning("Rate limiter %s:%s still saturated after %.1fs; proceeding", self.prefix, key, waited)
                break
            time.sleep(poll_seconds)
        return time.monotonic() - started
