"""
Redis client configuration for reshard state and events
"""
import logging
import redis.asyncio as redis
from typing import Optional

from reshard.config import ReshardConfig

logger = logging.getLogger(__name__)


class RedisClient:
    """Singleton Redis client for reshard state storage"""

    _instance: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create Redis client instance"""
        if cls._instance is None:
            redis_kwargs = {
                "host": ReshardConfig.REDIS_HOST,
                "port": ReshardConfig.REDIS_PORT,
                "db": ReshardConfig.REDIS_DB,
                "decode_responses": True,
                "socket_connect_timeout": 5,
                "socket_timeout": 5,
            }

            # Only pass password if it's set (not empty string)
            if ReshardConfig.REDIS_PASSWORD:
                redis_kwargs["password"] = ReshardConfig.REDIS_PASSWORD

            cls._instance = redis.Redis(**redis_kwargs)

            try:
                await cls._instance.ping()
                logger.info(
                    f"Redis connected: {ReshardConfig.REDIS_HOST}:{ReshardConfig.REDIS_PORT} "
                    f"(DB {ReshardConfig.REDIS_DB})"
                )
            except redis.ConnectionError as e:
                logger.error(f"Redis connection failed: {e}")
                cls._instance = None
                raise

        return cls._instance

    @classmethod
    async def close(cls):
        """Close Redis connection"""
        if cls._instance:
            await cls._instance.aclose()
            cls._instance = None
            logger.info("Redis connection closed")
