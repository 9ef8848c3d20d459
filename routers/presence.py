from fastapi import APIRouter, Depends

from dependencies import get_presence_store
from logging_config import get_logger
from presence import PresenceStore
from schemas.presence import OnlineConnection, PresenceResponse

logger = get_logger(__name__)

presence_router = APIRouter(prefix="/presence", tags=["presence"])


@presence_router.get("/", response_model=PresenceResponse)
async def list_presence(presence: PresenceStore = Depends(get_presence_store)):
    entries = await presence.list_metadata()
    connections = [
        OnlineConnection(connection_id=conn_id, connected_at=meta.get("connected_at"), metadata=meta)
        for conn_id, meta in sorted(entries.items(), key=lambda item: str(item[1].get("connected_at", "")))
    ]
    logger.debug(f"Presence listing: {len(connections)} connections online")
    return PresenceResponse(online_count=len(connections), connections=connections)
