"""
Redis Configuration Module
Handles the Redis connection backing the shared subscription cache.
"""

import logging
import os
import threading
import time

import redis
from redis.connection import ConnectionPool

logger = logging.getLogger(__name__)


class RedisConfig:
    """Redis configuration and connection management"""

    def __init__(self):
        # REDIS_URL (full connection string) takes priority over host/port
        self.redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
        self.redis_max_connections = int(os.environ.get("REDIS_MAX_CONNECTIONS", "20"))
        self.redis_socket_timeout = int(os.environ.get("REDIS_SOCKET_TIMEOUT", "5"))
        self.redis_socket_connect_timeout = int(os.environ.get("REDIS_SOCKET_CONNECT_TIMEOUT", "3"))

        self._client: redis.Redis | None = None
        self._pool: ConnectionPool | None = None

        self._available_cached: bool | None = None
        self._available_cached_at: float = 0.0
        self._available_cache_ttl: float = 30.0  # seconds

    def get_connection_pool(self) -> ConnectionPool:
        """Get Redis connection pool"""
        if self._pool is None:
            connection_kwargs = {
                "max_connections": self.redis_max_connections,
                "socket_timeout": self.redis_socket_timeout,
                "socket_connect_timeout": self.redis_socket_connect_timeout,
                "decode_responses": True,
            }
            if self.redis_url.startswith("rediss://"):
                connection_kwargs["ssl_cert_reqs"] = None
            self._pool = ConnectionPool.from_url(self.redis_url, **connection_kwargs)
        return self._pool

    def get_client(self) -> redis.Redis | None:
        """Get Redis client instance, or None when Redis cannot be reached"""
        if self._client is None:
            try:
                self._client = redis.Redis(connection_pool=self.get_connection_pool())
                self._client.ping()
                logger.info("Redis connection established successfully")
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable: {e}")
                self._client = None
        return self._client

    def is_available(self) -> bool:
        """Check if Redis is available (cached for 30s, failures for 5s)."""
        now = time.monotonic()
        age = now - self._available_cached_at

        if self._available_cached is not None:
            ttl = self._available_cache_ttl if self._available_cached else 5.0
            if age < ttl:
                return self._available_cached

        available = False
        client = self.get_client()
        if client is not None:
            try:
                client.ping()
                available = True
            except redis.RedisError as e:
                logger.debug(f"Redis ping failed: {e}")

        self._available_cached = available
        self._available_cached_at = now
        return available


# Global Redis configuration instance
_redis_config = None
_redis_config_lock = threading.Lock()


def get_redis_config() -> RedisConfig:
    """Get global Redis configuration instance (thread-safe singleton)."""
    global _redis_config
    if _redis_config is None:
        with _redis_config_lock:
            if _redis_config is None:
                _redis_config = RedisConfig()
    return _redis_config


def get_redis_client() -> redis.Redis | None:
    """Get Redis client instance"""
    return get_redis_config().get_client()


def is_redis_available() -> bool:
    """Check if Redis is available"""
    return get_redis_config().is_available()
