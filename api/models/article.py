"""Article model definitions."""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from shared.status import ArticleStatus, PublishFrequency


class ArticleModel(BaseModel):
    """Article model for database representation."""
    id: str = Field(alias="_id")
    title: str
    keywords: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    status: ArticleStatus
    publish_frequency: PublishFrequency = PublishFrequency.ONCE

    generation_scheduled_at: Optional[datetime] = None
    publish_scheduled_at: Optional[datetime] = None
    generation_started_at: Optional[datetime] = None
    generation_completed_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    last_published_at: Optional[datetime] = None
    publish_count: int = 0
    deleted_at: Optional[datetime] = None

    generation_progress: int = Field(default=0, ge=0, le=100)
    generation_phase: Optional[str] = None
    generation_error: Optional[str] = None
    phase_plan: Optional[Dict[str, Any]] = None

    research_data: Optional[Any] = None
    sources: List[str] = Field(default_factory=list)
    outline: Optional[Any] = None
    draft_content: Optional[str] = None
    content: Optional[str] = None
    cover_image_url: Optional[str] = None
    cover_image_alt: Optional[str] = None
    quality_issues: List[Dict[str, Any]] = Field(default_factory=list)
    validation_issues: List[Dict[str, Any]] = Field(default_factory=list)
    fact_check_report: Optional[str] = None
    seo_metadata: Optional[Dict[str, Any]] = None

    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
