from typing import Optional

from backend import CacheBackend
from logging_config import get_logger
from redis_keys import ENGAGEMENT_COUNT, ENGAGEMENT_DEDUP, render_key

logger = get_logger(__name__)

LIKE = "like"
READ = "read"


class EngagementDeduper:
    """Accept at most one action per visitor per resource within a window.

    Dedup state lives only in the visitor set. The counter is a display
    total; it is bumped after the set insert and the two writes are not
    jointly atomic, so a failure between them can leave the counter one
    behind. The failure still propagates to the caller.
    """

    def __init__(self, cache: CacheBackend, action: str, window_seconds: Optional[int] = None):
        self.cache = cache
        self.action = action
        self.window_seconds = window_seconds

    def dedup_key(self, resource_kind: str, resource_id: str) -> str:
        return render_key(ENGAGEMENT_DEDUP, self.action, resource_kind, resource_id)

    def counter_key(self, resource_kind: str, resource_id: str) -> str:
        return render_key(ENGAGEMENT_COUNT, self.action, resource_kind, resource_id)

    async def record_action(self, resource_kind: str, resource_id: str, visitor_id: str) -> bool:
        """Return True if this visitor's action was accepted and counted.

        False means the visitor already acted within the current window.
        CacheUnavailable from either write is raised, never reported as
        False.
        """
        is_new = await self.cache.add_to_set(
            self.dedup_key(resource_kind, resource_id), visitor_id, ttl_seconds=self.window_seconds
        )
        if not is_new:
            logger.info(f"Duplicate {self.action} on {resource_kind}/{resource_id} from {visitor_id}")
            return False

        count = await self.cache.increment(self.counter_key(resource_kind, resource_id))
        logger.info(f"Accepted {self.action} on {resource_kind}/{resource_id} from {visitor_id}, count={count}")
        return True

    async def get_count(self, resource_kind: str, resource_id: str) -> int:
        value = await self.cache.get(self.counter_key(resource_kind, resource_id))
        return int(value) if value else 0

    async def has_acted(self, resource_kind: str, resource_id: str, visitor_id: str) -> bool:
        return await self.cache.is_member(self.dedup_key(resource_kind, resource_id), visitor_id)
