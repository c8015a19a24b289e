"""
Redis client configuration for the decision core.

Connection details come from ProcedureStoreSettings; this module never
reads the environment itself.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import redis.asyncio as redis

from decisioncore.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RedisClientFactory:
    """Factory for creating configured Redis clients."""

    @staticmethod
    def create_client(
        redis_url: Optional[str],
        password: Optional[str] = None,
        **kwargs
    ) -> redis.Redis:
        """
        Create a Redis client from a URL.

        Args:
            redis_url: Complete Redis URL
            password: Password overriding the one embedded in the URL
            **kwargs: Additional Redis client parameters

        Returns:
            Configured Redis client

        Raises:
            ConfigurationError: If no URL is configured
        """
        if not redis_url:
            raise ConfigurationError("Redis URL is not configured")

        pool_kwargs = {
            "max_connections": kwargs.pop("max_connections", 20),
            "socket_connect_timeout": kwargs.pop("socket_connect_timeout", 5),
            "socket_timeout": kwargs.pop("socket_timeout", 10),
            "decode_responses": kwargs.pop("decode_responses", True),
        }
        if password:
            pool_kwargs["password"] = password

        client = redis.from_url(redis_url, **pool_kwargs, **kwargs)
        logger.info(f"Redis client created from URL: {RedisClientFactory._mask_url(redis_url)}")
        return client

    @staticmethod
    def _mask_url(url: str) -> str:
        """Mask password in URL for logging."""
        parsed = urlparse(url)
        if parsed.password:
            masked_netloc = parsed.netloc.replace(parsed.password, "***")
            return url.replace(parsed.netloc, masked_netloc)
        return url

    @staticmethod
    async def test_connection(client: redis.Redis) -> bool:
        """
        Test Redis connection health.

        Returns:
            True if connection is healthy
        """
        try:
            return bool(await client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis connection test failed: {e}")
            return False


def create_redis_client(redis_url: Optional[str], password: Optional[str] = None, **kwargs) -> redis.Redis:
    """
    Convenience function to create a Redis client.

    Usage:
        client = create_redis_client(redis_url="redis://:password@host:6379/0")
    """
    return RedisClientFactory.create_client(redis_url, password=password, **kwargs)
