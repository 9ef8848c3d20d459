from typing import Any, Dict, Optional

from pydantic import BaseModel


class OnlineConnection(BaseModel):
    connection_id: str
    connected_at: Optional[str] = None
    metadata: Dict[str, Any] = {}

class PresenceResponse(BaseModel):
    online_count: int
    connections: list[OnlineConnection]
