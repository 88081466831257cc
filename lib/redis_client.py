# =============================================================================
# lib/redis_client.py - Redis Helpers
# =============================================================================
# Shared Redis access for the API and workers:
# - version_group_lock(): serializes "unset all primaries, then set one" and
#   free-remix reservations for a single version group
# - claim_dedup_key(): one-shot keys used to drop duplicate job submissions
#
# The same Redis instance backs the Celery broker (REDIS_URL).
# =============================================================================

import logging
from contextlib import contextmanager
from typing import Iterator

import redis

from app.config import settings

logger = logging.getLogger(__name__)

# Key prefixes
LOCK_PREFIX = "staging:lock:version-group:"
DEDUP_PREFIX = "staging:jobs:dedup:"

# Locks expire on their own if a request dies while holding one
LOCK_TIMEOUT_SECONDS = 10
LOCK_WAIT_SECONDS = 5

_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """Get (and cache) a Redis client built from REDIS_URL."""
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL)
    return _client


@contextmanager
def version_group_lock(group_id: str) -> Iterator[None]:
    """
    Hold the per-version-group lock for the duration of the block.

    Usage:
        with version_group_lock(group_id):
            unset_all_primaries(group_id)
            set_primary(job_id)

    Raises:
        redis.exceptions.LockError: If the lock can't be acquired in time
    """
    lock = get_redis_client().lock(
        f"{LOCK_PREFIX}{group_id}",
        timeout=LOCK_TIMEOUT_SECONDS,
        blocking_timeout=LOCK_WAIT_SECONDS,
    )
    if not lock.acquire():
        raise redis.exceptions.LockError(f"Timed out waiting for version group {group_id}")

    logger.debug(f"Acquired version group lock: {group_id}")
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockNotOwnedError:
            logger.warning(f"Version group lock expired before release: {group_id}")


def claim_dedup_key(dedup_id: str, ttl_seconds: int = 86400) -> bool:
    """
    Claim a deduplication ID.

    Returns:
        True the first time an ID is claimed within the TTL, False afterwards
    """
    claimed = get_redis_client().set(f"{DEDUP_PREFIX}{dedup_id}", "1", nx=True, ex=ttl_seconds)
    return bool(claimed)
