"""Queue item model definitions."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from shared.status import QueueStatus, SchedulingType


class QueueItemModel(BaseModel):
    """Generation queue item for database representation."""
    id: str = Field(alias="_id")
    article_id: str
    scheduled_for_date: datetime
    queue_position: int
    scheduling_type: SchedulingType = SchedulingType.MANUAL
    status: QueueStatus
    attempts: int = 0
    error_message: Optional[str] = None
    claimed_by: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
