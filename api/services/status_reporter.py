"""Read-only generation status view combining the article and its queue item."""
from typing import Any, Dict

from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository
from shared.errors import NotFoundError
from shared.status import ArticleStatus, display_status

# Statuses reporting full progress regardless of the stored value
FINISHED_STATUSES = {ArticleStatus.WAIT_FOR_PUBLISH.value, ArticleStatus.PUBLISHED.value}

# Statuses that have not started generating yet
NOT_STARTED_STATUSES = {ArticleStatus.IDEA.value, ArticleStatus.SCHEDULED.value}


class StatusReporter:
    """
    Reports where an article is in its generation lifecycle.

    The article's status and phase are authoritative. The active queue item
    only contributes scheduling metadata, so a stale queue item can never
    make a finished article look in-flight.
    """

    def __init__(self, article_repo: ArticleRepository, queue_repo: QueueRepository):
        self.article_repo = article_repo
        self.queue_repo = queue_repo

    async def get_status(self, article_id: str) -> Dict[str, Any]:
        article = await self.article_repo.get_article(article_id)
        if article is None:
            raise NotFoundError(f"Article {article_id} not found")

        status = article["status"]
        item = await self.queue_repo.get_active_for_article(article_id)

        if status in NOT_STARTED_STATUSES:
            progress = 0
            phase = None
        elif status in FINISHED_STATUSES:
            progress = 100
            phase = article.get("generation_phase")
        else:
            progress = article.get("generation_progress") or 0
            phase = article.get("generation_phase")

        return {
            "article_id": article_id,
            "status": status,
            "display_status": display_status(status),
            "phase": phase,
            "progress": progress,
            "started_at": article.get("generation_started_at"),
            "completed_at": article.get("generation_completed_at"),
            "error": article.get("generation_error") if status == ArticleStatus.FAILED.value else None,
            "scheduled_for": item["scheduled_for_date"] if item else article.get("generation_scheduled_at"),
            "queue_status": item["status"] if item else None,
            "attempts": item["attempts"] if item else 0,
        }
