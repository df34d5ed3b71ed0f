"""Publisher for article lifecycle events on the Redis channel."""
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import settings
from shared.utils import format_datetime

logger = logging.getLogger(__name__)


class EventType:
    """Event type constants."""
    ARTICLE_UPDATE = "article_update"
    ARTICLE_PUBLISHED = "article_published"


class EventPublisher:
    """Publishes article updates for WebSocket subscribers."""

    def __init__(self, redis_client: redis.Redis, channel: Optional[str] = None):
        self.redis = redis_client
        self.channel = channel or settings.redis_event_channel

    @staticmethod
    def build_event(event_type: str, article: Dict[str, Any]) -> Dict[str, Any]:
        """Project an article document into a compact event payload."""
        return {
            "type": event_type,
            "article_id": article["_id"],
            "status": article.get("status"),
            "phase": article.get("generation_phase"),
            "progress": article.get("generation_progress", 0),
            "error": article.get("generation_error"),
            "publish_scheduled_at": format_datetime(article.get("publish_scheduled_at")),
            "published_at": format_datetime(article.get("published_at")),
        }

    async def publish(self, event_type: str, article: Dict[str, Any]) -> int:
        """Publish an event; returns the number of receiving subscribers."""
        event = self.build_event(event_type, article)
        return await self.redis.publish(self.channel, json.dumps(event))

    async def article_updated(self, article: Dict[str, Any]) -> None:
        """Best-effort status notification; failures are logged, not raised."""
        try:
            await self.publish(EventType.ARTICLE_UPDATE, article)
        except RedisError as e:
            logger.warning(f"Failed to publish update for article {article.get('_id')}: {e}")

    async def article_published(self, article: Dict[str, Any]) -> None:
        """Downstream publish hook; errors propagate so the sweep retries."""
        await self.publish(EventType.ARTICLE_PUBLISHED, article)
