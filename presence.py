import json
from typing import Any, Dict, Optional

from backend import CacheBackend
from logging_config import get_logger
from redis_keys import PRESENCE, render_key

logger = get_logger(__name__)


class PresenceStore:
    """Metadata for currently open real-time connections.

    All connections share one hash; each connection id is a field whose value
    is the JSON-encoded metadata mapping.

    set_metadata is a read-merge-write and is not atomic as a whole. If two
    updates for the same connection interleave, the later write wins and
    fields only present in the earlier update can be lost. Presence is
    advisory, so this race is accepted.
    """

    def __init__(self, cache: CacheBackend, key: Optional[str] = None):
        self.cache = cache
        self.key = key or render_key(PRESENCE)

    async def reset(self):
        """Drop every entry. Run once at process start, before accepting connections."""
        await self.cache.delete_key(self.key)
        logger.info(f"Presence key {self.key} reset")

    async def get_metadata(self, connection_id: str) -> Dict[str, Any]:
        raw = await self.cache.get_field(self.key, connection_id)
        return self._decode(connection_id, raw) or {}

    async def set_metadata(self, connection_id: str, partial_update: Dict[str, Any]) -> Dict[str, Any]:
        existing = await self.get_metadata(connection_id)
        merged = {**existing, **partial_update}
        await self.cache.set_field(self.key, connection_id, json.dumps(merged))
        logger.debug(f"Presence for {connection_id} updated with keys {sorted(partial_update)}")
        return merged

    async def clear_metadata(self, connection_id: str):
        await self.cache.delete_field(self.key, connection_id)
        logger.debug(f"Presence for {connection_id} cleared")

    async def list_metadata(self) -> Dict[str, Dict[str, Any]]:
        """Live connections with readable metadata; malformed entries are skipped."""
        entries = await self.cache.get_all_fields(self.key)
        listed = {}
        for conn_id, raw in entries.items():
            data = self._decode(conn_id, raw)
            if data is not None:
                listed[conn_id] = data
        return listed

    async def count(self) -> int:
        # Values must be decoded so the count agrees with list_metadata
        return len(await self.list_metadata())

    @staticmethod
    def _decode(connection_id: str, raw: Optional[str]) -> Optional[Dict[str, Any]]:
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Malformed presence metadata for {connection_id}, skipping")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Presence metadata for {connection_id} is not a mapping, skipping")
            return None
        return data
