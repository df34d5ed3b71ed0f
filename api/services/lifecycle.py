"""Caller-facing lifecycle operations: create, schedule, reschedule, cancel, delete."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository, resolve_due_time
from shared.errors import ConflictError, InvalidTransition, NotFoundError, SchedulingError
from shared.events import EventPublisher
from shared.status import (
    EDITABLE_STATUSES,
    ArticleStatus,
    PublishFrequency,
    QueueStatus,
    SchedulingType,
    assert_transition,
    is_terminal,
)
from shared.utils import ensure_utc, get_utc_now

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "keywords", "notes", "publish_frequency")

# A publish time may be set until the article has been published or deleted
PUBLISH_SCHEDULABLE_STATUSES = [
    ArticleStatus.IDEA.value,
    ArticleStatus.SCHEDULED.value,
    ArticleStatus.GENERATING.value,
    ArticleStatus.WAIT_FOR_PUBLISH.value,
    ArticleStatus.FAILED.value,
]


class ArticleLifecycleService:
    """
    Service behind the article routes.

    Every status change goes through a compare-and-set on the article
    document, and every queue change through the queue repository, so two
    callers racing on the same article see one winner and one error.
    """

    def __init__(
        self,
        article_repo: ArticleRepository,
        queue_repo: QueueRepository,
        events: Optional[EventPublisher] = None
    ):
        self.article_repo = article_repo
        self.queue_repo = queue_repo
        self.events = events

    async def create_article(
        self,
        title: str,
        keywords: Optional[List[str]] = None,
        notes: Optional[str] = None,
        publish_frequency: str = PublishFrequency.ONCE.value
    ) -> Dict[str, Any]:
        article = await self.article_repo.create_article(title, keywords, notes, publish_frequency)
        logger.info(f"Created article {article['_id']}")
        await self._emit(article)
        return article

    async def get_article(self, article_id: str) -> Dict[str, Any]:
        article = await self.article_repo.get_article(article_id)
        if article is None:
            raise NotFoundError(f"Article {article_id} not found")
        return article

    async def list_articles(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> List[Dict[str, Any]]:
        return await self.article_repo.list_articles(status=status, limit=limit, skip=skip)

    async def update_article(self, article_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Edit generation inputs; only allowed before generation starts."""
        update = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS}
        if not update:
            return await self.get_article(article_id)

        updated = await self.article_repo.update_inputs(
            article_id, update, [status.value for status in EDITABLE_STATUSES]
        )
        if updated is None:
            article = await self.get_article(article_id)
            raise ConflictError(
                f"Article {article_id} cannot be edited while {article['status']}"
            )
        await self._emit(updated)
        return updated

    async def schedule_generation(
        self,
        article_id: str,
        due_at: Optional[datetime] = None,
        scheduling_type: str = SchedulingType.MANUAL.value,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Move an idea (or failed article) to scheduled and enqueue it.

        If the enqueue is rejected the article is put back into the status it
        came from before the error is re-raised.
        """
        now = now or get_utc_now()
        scheduled_for = resolve_due_time(due_at, now)

        article = await self.get_article(article_id)
        previous = article["status"]
        assert_transition(previous, ArticleStatus.SCHEDULED)

        if await self.queue_repo.get_active_for_article(article_id):
            raise ConflictError(f"Article {article_id} already has a pending generation")

        scheduled = await self.article_repo.transition_or_raise(
            article_id,
            ArticleStatus.SCHEDULED.value,
            {"generation_scheduled_at": scheduled_for},
            from_statuses=[previous]
        )

        try:
            item = await self.queue_repo.enqueue(article_id, scheduled_for, scheduling_type, now=now)
        except Exception:
            logger.warning(f"Enqueue failed for article {article_id}, restoring status {previous}")
            await self.article_repo.transition_status(
                article_id,
                previous,
                {"generation_scheduled_at": article.get("generation_scheduled_at")},
                from_statuses=[ArticleStatus.SCHEDULED.value]
            )
            raise

        logger.info(f"Scheduled article {article_id} for {scheduled_for.isoformat()}")
        await self._emit(scheduled)
        return {"article": scheduled, "queue_item": item}

    async def reschedule_generation(
        self,
        article_id: str,
        due_at: datetime,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Move the pending generation of a scheduled article to a new time."""
        now = now or get_utc_now()
        item = await self._pending_item(article_id)
        updated_item = await self.queue_repo.reschedule(item["_id"], due_at, now)

        article = await self.article_repo.transition_or_raise(
            article_id,
            ArticleStatus.SCHEDULED.value,
            {"generation_scheduled_at": updated_item["scheduled_for_date"]},
            from_statuses=[ArticleStatus.SCHEDULED.value]
        )
        logger.info(
            f"Rescheduled article {article_id} to {updated_item['scheduled_for_date'].isoformat()}"
        )
        await self._emit(article)
        return {"article": article, "queue_item": updated_item}

    async def cancel_generation(self, article_id: str) -> Dict[str, Any]:
        """Drop the pending generation and return the article to idea."""
        article = await self.get_article(article_id)
        if article["status"] != ArticleStatus.SCHEDULED.value:
            raise InvalidTransition(article["status"], ArticleStatus.IDEA.value)

        item = await self.queue_repo.get_active_for_article(article_id)
        if item is not None:
            if item["status"] == QueueStatus.PROCESSING.value:
                raise ConflictError(f"Article {article_id} is already being generated")
            await self.queue_repo.cancel(item["_id"])

        updated = await self.article_repo.transition_or_raise(
            article_id,
            ArticleStatus.IDEA.value,
            {"generation_scheduled_at": None},
            from_statuses=[ArticleStatus.SCHEDULED.value]
        )
        logger.info(f"Cancelled generation for article {article_id}")
        await self._emit(updated)
        return updated

    async def run_now(self, article_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Make generation due immediately, scheduling the article if needed."""
        now = now or get_utc_now()
        article = await self.get_article(article_id)
        if article["status"] == ArticleStatus.SCHEDULED.value:
            return await self.reschedule_generation(article_id, now, now=now)
        return await self.schedule_generation(article_id, None, now=now)

    async def retry_generation(
        self,
        article_id: str,
        due_at: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Manual retry of a failed article."""
        article = await self.get_article(article_id)
        if article["status"] != ArticleStatus.FAILED.value:
            raise InvalidTransition(article["status"], ArticleStatus.SCHEDULED.value)
        return await self.schedule_generation(article_id, due_at, now=now)

    async def delete_article(self, article_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Soft-delete an article.

        A queued item is cancelled first. A run already in progress notices
        the deletion at its next phase boundary and aborts.
        """
        now = now or get_utc_now()
        article = await self.get_article(article_id)
        if is_terminal(article["status"]):
            raise InvalidTransition(article["status"], ArticleStatus.DELETED.value)
        await self.queue_repo.cancel_for_article(article_id)

        deleted = await self.article_repo.transition_or_raise(
            article_id,
            ArticleStatus.DELETED.value,
            {
                "deleted_at": now,
                "publish_scheduled_at": None,
                # published_at only stays set while the article is published
                "published_at": None,
                "last_published_at": article.get("last_published_at") or article.get("published_at")
            }
        )
        logger.info(f"Deleted article {article_id}")
        await self._emit(deleted)
        return deleted

    async def schedule_publish(
        self,
        article_id: str,
        publish_at: datetime,
        frequency: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Set when (and how often) a generated article goes live."""
        now = now or get_utc_now()
        publish_at = ensure_utc(publish_at)
        if publish_at <= now:
            raise SchedulingError("Publish time must be in the future")

        article = await self.get_article(article_id)
        frequency = PublishFrequency(
            frequency or article.get("publish_frequency") or PublishFrequency.ONCE.value
        ).value

        updated = await self.article_repo.set_publish_schedule(
            article_id, publish_at, frequency, PUBLISH_SCHEDULABLE_STATUSES
        )
        if updated is None:
            raise ConflictError(
                f"Article {article_id} is {article['status']}; its publish time can no longer change"
            )
        logger.info(f"Article {article_id} will publish at {publish_at.isoformat()} ({frequency})")
        await self._emit(updated)
        return updated

    async def cancel_publish_schedule(self, article_id: str) -> Dict[str, Any]:
        article = await self.get_article(article_id)
        updated = await self.article_repo.set_publish_schedule(
            article_id,
            None,
            article.get("publish_frequency") or PublishFrequency.ONCE.value,
            PUBLISH_SCHEDULABLE_STATUSES
        )
        if updated is None:
            raise ConflictError(
                f"Article {article_id} is {article['status']}; its publish time can no longer change"
            )
        await self._emit(updated)
        return updated

    async def list_queue(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> List[Dict[str, Any]]:
        return await self.queue_repo.list_items(status=status, limit=limit, skip=skip)

    async def _pending_item(self, article_id: str) -> Dict[str, Any]:
        article = await self.get_article(article_id)
        if article["status"] != ArticleStatus.SCHEDULED.value:
            raise InvalidTransition(
                article["status"],
                ArticleStatus.SCHEDULED.value,
                f"Article {article_id} has no pending generation (status {article['status']})"
            )
        item = await self.queue_repo.get_active_for_article(article_id)
        if item is None:
            raise NotFoundError(f"No pending generation for article {article_id}")
        if item["status"] == QueueStatus.PROCESSING.value:
            raise ConflictError(f"Article {article_id} is already being generated")
        return item

    async def _emit(self, article: Dict[str, Any]):
        if self.events is not None:
            await self.events.article_updated(article)
