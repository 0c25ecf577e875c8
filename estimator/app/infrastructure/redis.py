import uuid
from typing import Optional

import redis
from redis.exceptions import ConnectionError, RedisError

from estimator.app.logging_config import get_logger

logger = get_logger("app.infrastructure.redis")

JOB_NOTIFY_CHANNEL = "jobs:notifications"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def check_redis_connectivity(redis_url: str) -> bool:
    try:
        client = redis.from_url(redis_url)
        client.ping()
        client.close()
        logger.info("Redis connectivity check passed")
        return True
    except ConnectionError as e:
        logger.error(f"Redis connectivity check failed: {e}")
        return False
    except RedisError as e:
        logger.error(f"Redis error during connectivity check: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error during Redis connectivity check: {e}")
        return False


class RedisClient:
    """Redis client for job notifications, worker heartbeats and locks.

    The database stays the source of truth for jobs; Redis only coordinates.
    """

    def __init__(self, redis_url: str):
        self._client = redis.from_url(redis_url, decode_responses=True)

    def close(self) -> None:
        self._client.close()

    def ping(self) -> bool:
        try:
            return self._client.ping()
        except RedisError:
            return False

    # =========================================================================
    # Job notifications
    # =========================================================================

    def notify_job_created(self, job_id: uuid.UUID, job_type: str) -> None:
        try:
            message = f"{job_id}:{job_type}"
            self._client.publish(JOB_NOTIFY_CHANNEL, message)
            logger.debug(f"Published job notification: {message}")
        except RedisError as e:
            logger.warning(f"Failed to publish job notification: {e}")

    # =========================================================================
    # Worker heartbeat
    # =========================================================================

    def register_worker(self, worker_id: str, ttl_seconds: int = 60) -> None:
        self._client.setex(f"workers:{worker_id}", ttl_seconds, "active")

    def heartbeat(self, worker_id: str, ttl_seconds: int = 60) -> None:
        self._client.setex(f"workers:{worker_id}", ttl_seconds, "active")

    def unregister_worker(self, worker_id: str) -> None:
        self._client.delete(f"workers:{worker_id}")

    def get_active_workers(self) -> list[str]:
        keys = self._client.keys("workers:*")
        return [k.replace("workers:", "") for k in keys]

    # =========================================================================
    # Distributed locking
    # =========================================================================

    def acquire_lock(self, name: str, ttl_seconds: int = 30) -> Optional[str]:
        """
        Acquire a distributed lock.
        Returns a token if successful, None if lock is held.
        """
        token = str(uuid.uuid4())
        if self._client.set(f"locks:{name}", token, nx=True, ex=ttl_seconds):
            return token
        return None

    def release_lock(self, name: str, token: str) -> bool:
        result = self._client.eval(_RELEASE_SCRIPT, 1, f"locks:{name}", token)
        return result == 1


_redis_client: Optional[RedisClient] = None


def get_redis_client(redis_url: str) -> RedisClient:
    """Get or create the Redis client singleton."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient(redis_url)
    return _redis_client


def close_redis_client() -> None:
    global _redis_client
    if _redis_client:
        _redis_client.close()
        _redis_client = None
