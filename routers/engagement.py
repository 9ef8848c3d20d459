from fastapi import APIRouter, Depends, HTTPException, Response

from dependencies import get_dedupers, get_visitor_id
from engagement import LIKE, READ, EngagementDeduper
from logging_config import get_logger
from schemas.engagement import EngagementAction, EngagementCountsResponse, ResourceKind

logger = get_logger(__name__)

engagement_router = APIRouter(prefix="/engagement", tags=["engagement"])

DUPLICATE_MESSAGES = {
    EngagementAction.like: "You have already liked this {kind}",
    EngagementAction.read: "This {kind} was already counted as read for you",
}


@engagement_router.post("/{resource_kind}/{resource_id}/{action}", status_code=204)
async def record_engagement(
    resource_kind: ResourceKind,
    resource_id: str,
    action: EngagementAction,
    visitor_id: str = Depends(get_visitor_id),
    dedupers: dict[str, EngagementDeduper] = Depends(get_dedupers),
):
    # POST /engagement/post/42/like -> 204 on first like, 400 on repeat within the window
    logger.info(f"{action.value} request for {resource_kind.value}/{resource_id} from {visitor_id}")
    accepted = await dedupers[action.value].record_action(resource_kind.value, resource_id, visitor_id)
    if not accepted:
        raise HTTPException(status_code=400, detail=DUPLICATE_MESSAGES[action].format(kind=resource_kind.value))
    return Response(status_code=204)


@engagement_router.get("/{resource_kind}/{resource_id}", response_model=EngagementCountsResponse)
async def get_engagement(
    resource_kind: ResourceKind,
    resource_id: str,
    visitor_id: str = Depends(get_visitor_id),
    dedupers: dict[str, EngagementDeduper] = Depends(get_dedupers),
):
    likes = await dedupers[LIKE].get_count(resource_kind.value, resource_id)
    reads = await dedupers[READ].get_count(resource_kind.value, resource_id)
    liked = await dedupers[LIKE].has_acted(resource_kind.value, resource_id, visitor_id)
    logger.debug(f"Engagement for {resource_kind.value}/{resource_id}: likes={likes}, reads={reads}")
    return EngagementCountsResponse(
        resource_kind=resource_kind,
        resource_id=resource_id,
        likes=likes,
        reads=reads,
        liked=liked,
    )
