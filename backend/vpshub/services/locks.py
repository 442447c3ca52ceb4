from __future__ import annotations
import logging
import uuid
import redis
from contextlib import contextmanager
from vpshub.core.config import settings

logger = logging.getLogger(__name__)

def _client() -> redis.Redis:
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

@contextmanager
def redis_lock(key: str, ttl_seconds: int = 120, client: redis.Redis | None = None):
    """Single-instance guard for sweeps: SET NX EX, released only by its owner."""
    token = str(uuid.uuid4())
    c = client or _client()
    acquired = c.set(key, token, nx=True, ex=ttl_seconds)
    if not acquired:
        logger.info("lock busy key=%s", key)
    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                if c.get(key) == token:
                    c.delete(key)
            except redis.RedisError:
                # the key still expires after ttl_seconds
                logger.warning("lock release failed key=%s", key)
