"""Response schemas for API endpoints."""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from api.models import ArticleModel, QueueItemModel
from shared.status import display_status, is_active


class ArticleResponse(BaseModel):
    """Response schema for a single article."""
    article_id: str = Field(..., description="Unique article identifier")
    title: str
    keywords: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    status: str = Field(..., description="Lifecycle status")
    display_status: str = Field(..., description="Board bucket: idea, generated, published or deleted")
    publish_frequency: str
    generation_scheduled_at: Optional[datetime] = None
    publish_scheduled_at: Optional[datetime] = None
    generation_phase: Optional[str] = None
    generation_progress: int = 0
    generation_error: Optional[str] = None
    content: Optional[str] = None
    cover_image_url: Optional[str] = None
    seo_metadata: Optional[Dict[str, Any]] = None
    sources: List[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None
    last_published_at: Optional[datetime] = None
    publish_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ArticleResponse":
        article = ArticleModel.model_validate(document)
        return cls(
            article_id=article.id,
            title=article.title,
            keywords=article.keywords,
            notes=article.notes,
            status=article.status.value,
            display_status=display_status(article.status),
            publish_frequency=article.publish_frequency.value,
            generation_scheduled_at=article.generation_scheduled_at,
            publish_scheduled_at=article.publish_scheduled_at,
            generation_phase=article.generation_phase,
            generation_progress=article.generation_progress,
            generation_error=article.generation_error,
            content=article.content,
            cover_image_url=article.cover_image_url,
            seo_metadata=article.seo_metadata,
            sources=article.sources,
            published_at=article.published_at,
            last_published_at=article.last_published_at,
            publish_count=article.publish_count,
            created_at=article.created_at,
            updated_at=article.updated_at
        )


class QueueItemResponse(BaseModel):
    """Response schema for a generation queue item."""
    item_id: str = Field(..., description="Unique queue item identifier")
    article_id: str
    scheduled_for_date: datetime
    queue_position: int
    scheduling_type: str
    status: str
    active: bool = Field(..., description="Queued or processing")
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "QueueItemResponse":
        item = QueueItemModel.model_validate(document)
        return cls(
            item_id=item.id,
            article_id=item.article_id,
            scheduled_for_date=item.scheduled_for_date,
            queue_position=item.queue_position,
            scheduling_type=item.scheduling_type.value,
            status=item.status.value,
            active=is_active(item.status),
            attempts=item.attempts,
            error_message=item.error_message,
            created_at=item.created_at
        )


class ScheduleResponse(BaseModel):
    """Response schema for schedule, reschedule and run-now."""
    article: ArticleResponse
    queue_item: QueueItemResponse
    message: str = Field(default="Generation scheduled")


class GenerationStatusResponse(BaseModel):
    """Response schema for generation status."""
    article_id: str
    status: str
    display_status: str
    phase: Optional[str] = None
    progress: int = Field(..., ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = Field(None, description="Only set when the article failed")
    scheduled_for: Optional[datetime] = None
    queue_status: Optional[str] = None
    attempts: int = 0


class PublishSweepResponse(BaseModel):
    """Response schema for an on-demand publish sweep."""
    checked: int = Field(..., description="Articles found due")
    published: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Schema for error responses."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
