"""
Redis-backed cross-instance sync lock
The in-process flag only guards one worker; this lock stops two deployments
from scraping the portal at the same time. Fail-open when Redis is absent.
"""

import logging
import uuid
from typing import Optional

import redis

from .config import REDIS_URL, SYNC_LOCK_TTL_SECONDS

logger = logging.getLogger(__name__)

SYNC_LOCK_KEY = "sto:sync:lock"

# Only delete the key if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create the Redis client.
    Returns None when REDIS_URL is unset or the server cannot be reached.
    """
    global redis_client

    if redis_client is not None or not REDIS_URL:
        return redis_client

    # Mask password in URL for logging
    if "@" in REDIS_URL:
        url_parts = REDIS_URL.split("@")
        protocol = url_parts[0].split(":")[0]
        masked_url = f"{protocol}:****@{url_parts[1]}"
    else:
        masked_url = "****"
    logger.info(f"📡 Connecting to Redis for the sync lock: {masked_url}")

    try:
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        client.ping()
        redis_client = client
        logger.info("✅ Redis connected")
    except redis.RedisError as e:
        logger.error(f"❌ Failed to connect to Redis: {e}")
        logger.error("⚠️ Sync lock disabled - only the in-process guard applies (fail-open mode)")
    return redis_client


class RedisSyncLock:
    """Non-blocking lock with a TTL so a crashed worker cannot hold it forever"""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        key: str = SYNC_LOCK_KEY,
        ttl_seconds: int = SYNC_LOCK_TTL_SECONDS,
    ):
        self._client = client
        self.key = key
        self.ttl_seconds = ttl_seconds
        self._token: Optional[str] = None

    def _get_client(self) -> Optional[redis.Redis]:
        return self._client if self._client is not None else get_redis_client()

    def acquire(self) -> bool:
        client = self._get_client()
        if client is None:
            return True

        token = uuid.uuid4().hex
        try:
            acquired = bool(client.set(self.key, token, nx=True, ex=self.ttl_seconds))
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis sync lock unavailable, continuing without it: {e}")
            return True

        if acquired:
            self._token = token
        return acquired

    def release(self) -> None:
        client = self._get_client()
        if client is None or self._token is None:
            return
        try:
            client.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to release Redis sync lock (expires in {self.ttl_seconds}s): {e}")
        finally:
            self._token = None
