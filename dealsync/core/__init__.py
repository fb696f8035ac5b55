"""
Core utilities and clients.
"""

from dealsync.core.redis_client import RedisClient, get_redis
from dealsync.core.progress import ProgressChannel
from dealsync.core.retry import RateLimiter, with_retry
from dealsync.core.token_encryption import TokenEncryptor

__all__ = [
    "RedisClient",
    "get_redis",
    "ProgressChannel",
    "RateLimiter",
    "with_retry",
    "TokenEncryptor",
]
