"""Queue inspection and on-demand publish sweep routes."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_article_repo, get_event_publisher, get_lifecycle_service
from api.services.lifecycle import ArticleLifecycleService
from api.schemas.responses import QueueItemResponse, PublishSweepResponse
from consumer.publish_scheduler import PublishScheduler
from database.repositories.article_repo import ArticleRepository
from shared.events import EventPublisher
from shared.status import QueueStatus


router = APIRouter(tags=["scheduler"])


@router.get("/queue", response_model=List[QueueItemResponse])
async def list_queue(
    status_filter: Optional[QueueStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    skip: int = Query(default=0, ge=0),
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """List queue items in processing order (due time, then queue position)."""
    items = await service.list_queue(
        status=status_filter.value if status_filter else None,
        limit=limit,
        skip=skip
    )
    return [QueueItemResponse.from_document(item) for item in items]


@router.post("/scheduler/publish-sweep", response_model=PublishSweepResponse)
async def run_publish_sweep(
    article_repo: ArticleRepository = Depends(get_article_repo),
    events: EventPublisher = Depends(get_event_publisher)
):
    """Run one publish sweep now instead of waiting for the next interval."""
    scheduler = PublishScheduler(article_repo, on_publish=events.article_published)
    return PublishSweepResponse(**await scheduler.sweep())
