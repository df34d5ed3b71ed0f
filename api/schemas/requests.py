"""Request schemas for API endpoints."""
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from shared.status import PublishFrequency, SchedulingType
from shared.utils import ensure_utc


def _clean_keywords(v: Optional[List[str]]) -> Optional[List[str]]:
    """Strip blanks and duplicates while keeping the caller's order."""
    if v is None:
        return v
    cleaned = []
    for keyword in v:
        keyword = keyword.strip()
        if keyword and keyword not in cleaned:
            cleaned.append(keyword)
    return cleaned


class ArticleCreateRequest(BaseModel):
    """Request schema for creating an article idea."""
    title: str = Field(..., min_length=1, max_length=300, description="Article title or topic")
    keywords: List[str] = Field(default_factory=list, max_length=50, description="Target keywords")
    notes: Optional[str] = Field(default=None, max_length=5000, description="Free-form notes for the writer")
    publish_frequency: PublishFrequency = Field(
        default=PublishFrequency.ONCE,
        description="once, daily, weekly or monthly"
    )

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject whitespace-only titles."""
        v = v.strip()
        if not v:
            raise ValueError('Title must not be blank')
        return v

    @field_validator('keywords')
    @classmethod
    def validate_keywords(cls, v: List[str]) -> List[str]:
        return _clean_keywords(v)


class ArticleUpdateRequest(BaseModel):
    """Request schema for editing generation inputs."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    keywords: Optional[List[str]] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=5000)
    publish_frequency: Optional[PublishFrequency] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError('Title must not be blank')
        return v.strip() if v is not None else v

    @field_validator('keywords')
    @classmethod
    def validate_keywords(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_keywords(v)


class ScheduleGenerationRequest(BaseModel):
    """Request schema for scheduling generation; no due time means now."""
    due_at: Optional[datetime] = Field(default=None, description="When generation should start (UTC)")
    scheduling_type: SchedulingType = Field(default=SchedulingType.MANUAL)

    @field_validator('due_at')
    @classmethod
    def validate_due_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive datetimes are taken as UTC."""
        return ensure_utc(v)


class RescheduleRequest(BaseModel):
    """Request schema for moving a pending generation."""
    due_at: datetime = Field(..., description="New generation time (UTC)")

    @field_validator('due_at')
    @classmethod
    def validate_due_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PublishScheduleRequest(BaseModel):
    """Request schema for setting the publish time."""
    publish_at: datetime = Field(..., description="When the article goes live (UTC)")
    frequency: Optional[PublishFrequency] = Field(
        default=None,
        description="Overrides the article's publish frequency when given"
    )

    @field_validator('publish_at')
    @classmethod
    def validate_publish_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)
