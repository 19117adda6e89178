"""Session view cache invalidation.

Any session create/update/delete/title change/message append evicts every
key under sessions:{owner_id}:* (SCAN MATCH + DELETE in batches). No locks:
a stale view can survive at most SESSION_CACHE_TTL_S.
"""

from uuid import UUID

from chatroute.logging import get_logger
from chatroute.services.response_cache import MISS, CacheResult

logger = get_logger(__name__)

SCAN_COUNT = 100
DELETE_BATCH = 500


def session_views_pattern(owner_id: UUID | str) -> str:
    return f"sessions:{owner_id}:*"


def invalidate_session_views(redis_client, owner_id: UUID | str, *, reason: str = "") -> CacheResult:
    """Evict all cached session views for an owner.

    Returns CacheResult(ok=True, value=<keys deleted>) or ok=False on
    failure; never raises.
    """
    if redis_client is None:
        return MISS

    deleted = 0
    try:
        batch: list[str] = []
        for key in redis_client.scan_iter(match=session_views_pattern(owner_id), count=SCAN_COUNT):
            batch.append(key)
            if len(batch) >= DELETE_BATCH:
                deleted += redis_client.delete(*batch)
                batch = []
        if batch:
            deleted += redis_client.delete(*batch)
    except Exception as e:
        logger.warning("session_cache.invalidate_failed", reason=reason, error=str(e))
        return CacheResult(ok=False, value=deleted, error=str(e))

    logger.debug("session_cache.invalidated", reason=reason, keys_deleted=deleted)
    return CacheResult(ok=True, value=deleted)
