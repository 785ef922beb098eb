"""Redis connection for the lease backend."""

from content_pipeline.storage.redis.connection import RedisConnection

__all__ = ["RedisConnection"]
