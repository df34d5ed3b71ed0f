"""Article lifecycle states and the legal transitions between them."""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from shared.errors import InvalidTransition


class ArticleStatus(str, Enum):
    """Article status enumeration."""
    IDEA = "idea"
    SCHEDULED = "scheduled"
    GENERATING = "generating"
    WAIT_FOR_PUBLISH = "wait_for_publish"
    PUBLISHED = "published"
    FAILED = "failed"
    DELETED = "deleted"


class QueueStatus(str, Enum):
    """Queue item status enumeration."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SchedulingType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class PublishFrequency(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class GenerationPhase(str, Enum):
    """Pipeline phase tags, in execution order."""
    RESEARCH = "research"
    OUTLINE = "outline"
    WRITING = "writing"
    IMAGE_SELECTION = "image-selection"
    QUALITY_CONTROL = "quality-control"
    VALIDATING = "validating"
    UPDATING = "updating"
    SEO_AUDIT = "seo-audit"
    COMPLETED = "completed"


TRANSITIONS: Dict[ArticleStatus, FrozenSet[ArticleStatus]] = {
    ArticleStatus.IDEA: frozenset({ArticleStatus.SCHEDULED, ArticleStatus.DELETED}),
    ArticleStatus.SCHEDULED: frozenset({
        ArticleStatus.GENERATING,
        ArticleStatus.IDEA,
        ArticleStatus.DELETED,
    }),
    ArticleStatus.GENERATING: frozenset({
        ArticleStatus.WAIT_FOR_PUBLISH,
        ArticleStatus.FAILED,
        ArticleStatus.DELETED,
    }),
    ArticleStatus.WAIT_FOR_PUBLISH: frozenset({ArticleStatus.PUBLISHED, ArticleStatus.DELETED}),
    ArticleStatus.FAILED: frozenset({
        ArticleStatus.SCHEDULED,
        ArticleStatus.IDEA,
        ArticleStatus.DELETED,
    }),
    ArticleStatus.PUBLISHED: frozenset({ArticleStatus.DELETED}),
    ArticleStatus.DELETED: frozenset(),
}

# Statuses whose generation inputs may still be edited
EDITABLE_STATUSES = frozenset({ArticleStatus.IDEA, ArticleStatus.SCHEDULED, ArticleStatus.FAILED})

ACTIVE_QUEUE_STATUSES = frozenset({QueueStatus.QUEUED, QueueStatus.PROCESSING})

# User-facing buckets used by board/calendar clients
DISPLAY_STATUSES = {
    ArticleStatus.IDEA: "idea",
    ArticleStatus.SCHEDULED: "idea",
    ArticleStatus.GENERATING: "idea",
    ArticleStatus.FAILED: "idea",
    ArticleStatus.WAIT_FOR_PUBLISH: "generated",
    ArticleStatus.PUBLISHED: "published",
    ArticleStatus.DELETED: "deleted",
}


def _coerce(status) -> Optional[ArticleStatus]:
    if status is None or isinstance(status, ArticleStatus):
        return status
    try:
        return ArticleStatus(status)
    except ValueError:
        return None


def can_transition(current, target) -> bool:
    """Check whether an article may move from current to target."""
    current_status = _coerce(current)
    target_status = _coerce(target)
    if current_status is None or target_status is None:
        return False
    return target_status in TRANSITIONS[current_status]


def assert_transition(current, target) -> None:
    """Raise InvalidTransition unless current -> target is legal."""
    if not can_transition(current, target):
        raise InvalidTransition(
            getattr(current, "value", current),
            getattr(target, "value", target),
        )


def sources_for(target) -> List[str]:
    """All statuses that may legally move into target (compare-and-set filter)."""
    target_status = ArticleStatus(target)
    return [
        source.value
        for source, targets in TRANSITIONS.items()
        if target_status in targets
    ]


def is_terminal(status) -> bool:
    current = _coerce(status)
    return current is not None and not TRANSITIONS[current]


def is_active(status) -> bool:
    """Queued or processing queue items block a new enqueue for their article."""
    return getattr(status, "value", status) in {s.value for s in ACTIVE_QUEUE_STATUSES}


def display_status(status) -> str:
    """Map a stored status to the idea/generated/published board bucket."""
    current = _coerce(status)
    if current is None:
        return "idea"
    return DISPLAY_STATUSES[current]
