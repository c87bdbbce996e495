import time

import redis

from core.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Ограничение числа запросов фиксированным окном, счётчики живут в Redis.

    Если Redis недоступен, запрос пропускается: ограничение не должно ломать основной сценарий.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def allow(self, identifier: str, limit: int, window_seconds: int) -> bool:
        if limit <= 0:
            return True

        window = int(time.time() // window_seconds)
        key = f"ratelimit:{identifier}:{window}"
        try:
            count = self.redis.incr(key)
            if count == 1:
                self.redis.expire(key, window_seconds)
        except redis.RedisError as e:
            logger.warning(f"Rate limit check skipped for {identifier}: {e}")
            return True
        return count <= limit
