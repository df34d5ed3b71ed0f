"""Article routes for the REST API."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_lifecycle_service, get_status_reporter
from api.services.lifecycle import ArticleLifecycleService
from api.services.status_reporter import StatusReporter
from api.schemas.requests import (
    ArticleCreateRequest,
    ArticleUpdateRequest,
    ScheduleGenerationRequest,
    RescheduleRequest,
    PublishScheduleRequest
)
from api.schemas.responses import (
    ArticleResponse,
    QueueItemResponse,
    ScheduleResponse,
    GenerationStatusResponse,
    ErrorResponse
)
from shared.status import ArticleStatus


router = APIRouter(
    prefix="/articles",
    tags=["articles"],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse}
    }
)


def _schedule_response(result: dict, message: str) -> ScheduleResponse:
    return ScheduleResponse(
        article=ArticleResponse.from_document(result["article"]),
        queue_item=QueueItemResponse.from_document(result["queue_item"]),
        message=message
    )


@router.post("", response_model=ArticleResponse, status_code=status.HTTP_201_CREATED)
async def create_article(
    request: ArticleCreateRequest,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """Create a new article idea."""
    article = await service.create_article(
        title=request.title,
        keywords=request.keywords,
        notes=request.notes,
        publish_frequency=request.publish_frequency.value
    )
    return ArticleResponse.from_document(article)


@router.get("", response_model=List[ArticleResponse])
async def list_articles(
    status_filter: Optional[ArticleStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    skip: int = Query(default=0, ge=0),
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """List articles, newest first. Deleted articles are hidden unless filtered for."""
    articles = await service.list_articles(
        status=status_filter.value if status_filter else None,
        limit=limit,
        skip=skip
    )
    return [ArticleResponse.from_document(article) for article in articles]


@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    return ArticleResponse.from_document(await service.get_article(article_id))


@router.patch("/{article_id}", response_model=ArticleResponse)
async def update_article(
    article_id: str,
    request: ArticleUpdateRequest,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """Edit title, keywords, notes or frequency before generation starts."""
    changes = request.model_dump(exclude_unset=True, mode="json")
    article = await service.update_article(article_id, changes)
    return ArticleResponse.from_document(article)


@router.delete("/{article_id}", response_model=ArticleResponse)
async def delete_article(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """Soft-delete an article and drop any pending generation."""
    return ArticleResponse.from_document(await service.delete_article(article_id))


@router.post("/{article_id}/schedule", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def schedule_generation(
    article_id: str,
    request: ScheduleGenerationRequest,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """
    Schedule generation for an idea or failed article.

    - Rejects due times in the past (400)
    - Rejects articles that already have a pending generation (409)
    """
    result = await service.schedule_generation(
        article_id,
        due_at=request.due_at,
        scheduling_type=request.scheduling_type.value
    )
    return _schedule_response(result, "Generation scheduled")


@router.put("/{article_id}/reschedule", response_model=ScheduleResponse)
async def reschedule_generation(
    article_id: str,
    request: RescheduleRequest,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    result = await service.reschedule_generation(article_id, request.due_at)
    return _schedule_response(result, "Generation rescheduled")


@router.delete("/{article_id}/schedule", response_model=ArticleResponse)
async def cancel_generation(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """Cancel a pending generation; the article goes back to idea."""
    return ArticleResponse.from_document(await service.cancel_generation(article_id))


@router.post("/{article_id}/run-now", response_model=ScheduleResponse)
async def run_now(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    result = await service.run_now(article_id)
    return _schedule_response(result, "Generation due now")


@router.post("/{article_id}/retry", response_model=ScheduleResponse)
async def retry_generation(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    """Re-run generation for a failed article."""
    result = await service.retry_generation(article_id)
    return _schedule_response(result, "Generation retry scheduled")


@router.post("/{article_id}/publish-schedule", response_model=ArticleResponse)
async def schedule_publish(
    article_id: str,
    request: PublishScheduleRequest,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    article = await service.schedule_publish(
        article_id,
        request.publish_at,
        request.frequency.value if request.frequency else None
    )
    return ArticleResponse.from_document(article)


@router.delete("/{article_id}/publish-schedule", response_model=ArticleResponse)
async def cancel_publish_schedule(
    article_id: str,
    service: ArticleLifecycleService = Depends(get_lifecycle_service)
):
    return ArticleResponse.from_document(await service.cancel_publish_schedule(article_id))


@router.get("/{article_id}/generation-status", response_model=GenerationStatusResponse)
async def get_generation_status(
    article_id: str,
    reporter: StatusReporter = Depends(get_status_reporter)
):
    """Current phase, progress and scheduling info for one article."""
    return GenerationStatusResponse(**await reporter.get_status(article_id))
