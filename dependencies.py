from fastapi import Request

from backend import CacheBackend
from constants import LIKE_WINDOW_SECONDS, READ_WINDOW_SECONDS
from engagement import LIKE, READ, EngagementDeduper
from presence import PresenceStore


def get_cache(request: Request) -> CacheBackend:
    return request.app.state.cache


def get_presence_store(request: Request) -> PresenceStore:
    return request.app.state.presence


def get_dedupers(request: Request) -> dict[str, EngagementDeduper]:
    return request.app.state.dedupers


def build_dedupers(cache: CacheBackend) -> dict[str, EngagementDeduper]:
    return {
        LIKE: EngagementDeduper(cache, LIKE, window_seconds=LIKE_WINDOW_SECONDS),
        READ: EngagementDeduper(cache, READ, window_seconds=READ_WINDOW_SECONDS),
    }


def get_visitor_id(request: Request) -> str:
    """Caller identity used for dedup: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
