"""Periodic sweep that publishes generated articles once their publish time passes."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from database.repositories.article_repo import ArticleRepository
from shared.config import settings
from shared.status import PublishFrequency
from shared.utils import ensure_utc, get_utc_now, next_occurrence_after

logger = logging.getLogger(__name__)

PublishHook = Callable[[Dict[str, Any]], Awaitable[None]]


class PublishScheduler:
    """
    Promotes due wait_for_publish articles to published.

    Each sweep is safe to re-run: the status and due-time guard on the
    update means an article is published at most once per due time, and a
    failed hook leaves the article due for the next sweep.
    """

    def __init__(
        self,
        article_repo: ArticleRepository,
        on_publish: Optional[PublishHook] = None,
        interval: int = None,
        batch_size: int = None
    ):
        self.article_repo = article_repo
        self.on_publish = on_publish
        self.interval = interval or settings.publish_sweep_interval
        self.batch_size = batch_size or settings.publish_batch_size
        self.running = True
        self._stopped = asyncio.Event()

    async def start(self):
        """Run a sweep every interval until stopped."""
        logger.info(f"Publish scheduler starting (every {self.interval}s)")
        while self.running:
            try:
                await self.sweep()
            except Exception as e:
                # Keep the timer alive; the next sweep picks up the same articles
                logger.error(f"Publish sweep failed: {e}")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self):
        logger.info("Publish scheduler stopping...")
        self.running = False
        self._stopped.set()

    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One pass over every article due for publishing."""
        now = now or get_utc_now()
        due = await self.article_repo.find_due_for_publish(now, limit=self.batch_size)
        logger.info(f"Publish sweep found {len(due)} due articles")

        published: List[str] = []
        failed: List[str] = []
        for article in due:
            try:
                if await self._publish_one(article, now):
                    published.append(article["_id"])
            except Exception as e:
                logger.error(f"Failed to publish article {article['_id']}: {e}")
                failed.append(article["_id"])

        return {"checked": len(due), "published": published, "failed": failed}

    async def _publish_one(self, article: Dict[str, Any], now: datetime) -> bool:
        article_id = article["_id"]
        due_at = article["publish_scheduled_at"]
        frequency = article.get("publish_frequency") or PublishFrequency.ONCE.value

        if self.on_publish is not None:
            await self.on_publish(article)

        next_at = next_occurrence_after(ensure_utc(due_at), frequency, now)
        if next_at is not None:
            updated = await self.article_repo.rearm_recurring(article_id, due_at, next_at, now)
        else:
            updated = await self.article_repo.mark_published(article_id, due_at, now)

        if updated is None:
            logger.info(f"Article {article_id} was already handled by another sweep")
            return False

        if next_at is not None:
            logger.info(f"Published recurring article {article_id}; next run {next_at.isoformat()}")
        else:
            logger.info(f"Published article {article_id}")
        return True
