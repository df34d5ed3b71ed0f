# Schemas module
from .requests import (
    ArticleCreateRequest,
    ArticleUpdateRequest,
    ScheduleGenerationRequest,
    RescheduleRequest,
    PublishScheduleRequest
)
from .responses import (
    ArticleResponse,
    QueueItemResponse,
    ScheduleResponse,
    GenerationStatusResponse,
    PublishSweepResponse,
    ErrorResponse
)

__all__ = [
    "ArticleCreateRequest",
    "ArticleUpdateRequest",
    "ScheduleGenerationRequest",
    "RescheduleRequest",
    "PublishScheduleRequest",
    "ArticleResponse",
    "QueueItemResponse",
    "ScheduleResponse",
    "GenerationStatusResponse",
    "PublishSweepResponse",
    "ErrorResponse"
]
