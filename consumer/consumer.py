"""Main consumer entry point: generation workers plus the publish scheduler."""
import asyncio
import signal
import os
import logging
from consumer.generator import GenerationClient
from consumer.pipeline import GenerationPipeline
from consumer.publish_scheduler import PublishScheduler
from consumer.worker import GenerationWorker
from database.connection import DatabaseConnection
from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository
from shared.config import settings
from shared.events import EventPublisher

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Main entry point for the consumer service."""
    # Generate worker ID prefix from environment or pid
    worker_prefix = os.getenv("WORKER_ID", f"worker-{os.getpid()}")

    logger.info(f"Starting consumer {worker_prefix} with {settings.worker_concurrency} workers")

    # Initialize database connections
    db = await DatabaseConnection.init_mongo()
    redis_client = await DatabaseConnection.init_redis()

    article_repo = ArticleRepository(db)
    queue_repo = QueueRepository(db)
    events = EventPublisher(redis_client)
    pipeline = GenerationPipeline(
        article_repo,
        GenerationClient(),
        on_progress=events.article_updated
    )

    workers = [
        GenerationWorker(
            article_repo,
            queue_repo,
            pipeline,
            events=events,
            worker_id=f"{worker_prefix}-{index + 1}"
        )
        for index in range(settings.worker_concurrency)
    ]
    scheduler = PublishScheduler(article_repo, on_publish=events.article_published)

    # Restart recovery before taking new work
    await workers[0].recover_stale_claims()
    await workers[0].prune_orphans()

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_event_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        for worker in workers:
            asyncio.create_task(worker.stop())
        asyncio.create_task(scheduler.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await asyncio.gather(
            *(worker.start() for worker in workers),
            scheduler.start()
        )
    except Exception as e:
        logger.error(f"Consumer error: {e}")
    finally:
        # Cleanup
        await DatabaseConnection.close_connections()
        logger.info("Consumer shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
