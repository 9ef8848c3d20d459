from enum import Enum

from pydantic import BaseModel


class ResourceKind(str, Enum):
    post = "post"
    note = "note"
    page = "page"


class EngagementAction(str, Enum):
    like = "like"
    read = "read"


class EngagementCountsResponse(BaseModel):
    resource_kind: ResourceKind
    resource_id: str
    likes: int
    reads: int
    liked: bool
