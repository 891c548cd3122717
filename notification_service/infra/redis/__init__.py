from notification_service.infra.redis.client import (
    RedisClient,
    get_redis_instance,
    start_redis,
    stop_redis,
)

__all__ = ["RedisClient", "get_redis_instance", "start_redis", "stop_redis"]
