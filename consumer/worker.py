"""Worker process for consuming generation requests from the work queue."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository
from consumer.pipeline import GenerationPipeline
from shared.config import settings
from shared.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PhaseError,
    RecoverableError,
)
from shared.events import EventPublisher
from shared.status import ArticleStatus, QueueStatus
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)


class GenerationWorker:
    """Worker that claims due queue items and runs the generation pipeline."""

    def __init__(
        self,
        article_repo: ArticleRepository,
        queue_repo: QueueRepository,
        pipeline: GenerationPipeline,
        events: Optional[EventPublisher] = None,
        worker_id: str = "worker-1",
        poll_interval: float = None
    ):
        self.article_repo = article_repo
        self.queue_repo = queue_repo
        self.pipeline = pipeline
        self.events = events
        self.worker_id = worker_id
        self.poll_interval = poll_interval if poll_interval is not None else settings.consumer_poll_interval
        self.running = True

    async def start(self):
        """Start the worker loop."""
        logger.info(f"Worker {self.worker_id} starting...")

        while self.running:
            item = await self.process_next()

            if item is None:
                # Nothing due, wait before polling again
                await asyncio.sleep(self.poll_interval)

    async def stop(self):
        """Stop the worker gracefully."""
        logger.info(f"Worker {self.worker_id} stopping...")
        self.running = False

    async def process_next(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Claim and process the earliest due queue item.

        Returns the claimed item, or None when nothing is due.
        """
        item = await self.queue_repo.claim_next(self.worker_id, now)
        if item is None:
            return None

        await self._process_item(item, now)
        return item

    async def process_due(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """Drain every item due at `now` (used for on-demand runs and tests)."""
        processed = 0
        while processed < limit:
            item = await self.process_next(now)
            if item is None:
                break
            processed += 1
        return processed

    async def _process_item(self, item: Dict[str, Any], now: Optional[datetime] = None):
        """Run the pipeline for one claimed item."""
        item_id = item["_id"]
        article_id = item["article_id"]

        logger.info(f"Worker {self.worker_id} processing article {article_id} (item {item_id})")

        if not await self.article_repo.article_is_live(article_id):
            logger.warning(f"Article {article_id} no longer exists, pruning queue item {item_id}")
            await self.queue_repo.delete_item(item_id)
            return

        try:
            await self.pipeline.run(article_id)
        except (ConflictError, InvalidTransition, NotFoundError) as e:
            # Another run holds the article or its status moved on
            logger.warning(f"Skipping queue item {item_id} for article {article_id}: {e}")
            await self.queue_repo.delete_item(item_id)
            return
        except PhaseError as e:
            await self._handle_failure(item, e, now)
            return

        await self._handle_success(item)

    async def _handle_success(self, item: Dict[str, Any]):
        """Archive the queue item after a successful run."""
        await self.queue_repo.mark_completed(item["_id"])
        logger.info(f"Successfully generated article {item['article_id']}")

    async def _handle_failure(self, item: Dict[str, Any], error: PhaseError, now: Optional[datetime] = None):
        """Handle a failed run with queue-level retry logic."""
        article_id = item["article_id"]
        retryable = isinstance(error, RecoverableError)

        updated = await self.queue_repo.mark_failed(item["_id"], str(error), retryable=retryable, now=now)
        if updated is None:
            logger.error(f"Queue item {item['_id']} vanished while recording failure")
            return

        if updated["status"] == QueueStatus.QUEUED.value:
            # failed -> scheduled so the next claim can generate again
            article = await self.article_repo.transition_status(
                article_id,
                ArticleStatus.SCHEDULED.value,
                {"generation_scheduled_at": updated["scheduled_for_date"]},
                from_statuses=[ArticleStatus.FAILED.value]
            )
            if article is None:
                logger.warning(f"Article {article_id} is not failed, dropping retry item {updated['_id']}")
                await self.queue_repo.cancel(updated["_id"])
                return

            logger.info(
                f"Retrying article {article_id} at {updated['scheduled_for_date'].isoformat()} "
                f"(attempt {updated['attempts'] + 1}/{self.queue_repo.max_attempts})"
            )
            await self._publish_update(article)
        else:
            logger.error(f"Article {article_id} failed after {updated['attempts']} attempts: {error}")

    async def recover_stale_claims(self, now: Optional[datetime] = None) -> int:
        """
        Release items left processing by a worker that died.

        Interrupted articles go generating -> failed and then through the
        normal retry path. A claim that never started generating is put
        back in the queue as it was.
        """
        now = now or get_utc_now()
        cutoff = now - timedelta(seconds=settings.stale_claim_timeout)
        stale = await self.queue_repo.find_stale_claims(cutoff)

        for item in stale:
            logger.warning(f"Recovering stale claim {item['_id']} for article {item['article_id']}")
            await self.article_repo.fail_generation(
                item["article_id"], "Generation interrupted before completion"
            )
            article = await self.article_repo.get_article(item["article_id"])
            if article is not None and article["status"] == ArticleStatus.SCHEDULED.value:
                await self.queue_repo.release_claim(item["_id"], now)
                continue
            if article is None or article["status"] != ArticleStatus.FAILED.value:
                await self.queue_repo.delete_item(item["_id"])
                continue
            await self._handle_failure(
                item,
                RecoverableError("Generation interrupted before completion"),
                now=now
            )
        return len(stale)

    async def prune_orphans(self) -> int:
        """Delete active queue items whose article was removed."""
        pruned = 0
        for item in await self.queue_repo.list_active_items():
            if item["status"] != QueueStatus.QUEUED.value:
                continue
            if not await self.article_repo.article_is_live(item["article_id"]):
                if await self.queue_repo.cancel(item["_id"]):
                    pruned += 1
        if pruned:
            logger.info(f"Pruned {pruned} orphaned queue items")
        return pruned

    async def _publish_update(self, article: Dict[str, Any]):
        """Publish article update for WebSocket notification."""
        if self.events is not None:
            await self.events.article_updated(article)
