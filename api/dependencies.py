"""FastAPI dependencies wiring repositories and services to the shared connections."""
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
import redis.asyncio as redis

from database.connection import get_db, get_redis
from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository
from api.services.lifecycle import ArticleLifecycleService
from api.services.status_reporter import StatusReporter
from shared.events import EventPublisher


async def get_article_repo(db: AsyncIOMotorDatabase = Depends(get_db)) -> ArticleRepository:
    return ArticleRepository(db)


async def get_queue_repo(db: AsyncIOMotorDatabase = Depends(get_db)) -> QueueRepository:
    return QueueRepository(db)


async def get_event_publisher(redis_client: redis.Redis = Depends(get_redis)) -> EventPublisher:
    return EventPublisher(redis_client)


async def get_lifecycle_service(
    article_repo: ArticleRepository = Depends(get_article_repo),
    queue_repo: QueueRepository = Depends(get_queue_repo),
    events: EventPublisher = Depends(get_event_publisher)
) -> ArticleLifecycleService:
    return ArticleLifecycleService(article_repo, queue_repo, events)


async def get_status_reporter(
    article_repo: ArticleRepository = Depends(get_article_repo),
    queue_repo: QueueRepository = Depends(get_queue_repo)
) -> StatusReporter:
    return StatusReporter(article_repo, queue_repo)
