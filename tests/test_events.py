"""Event publisher tests."""
import json
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.events import EventPublisher, EventType


@pytest.fixture
def article():
    return {
        "_id": "art_001",
        "status": "generating",
        "generation_phase": "writing",
        "generation_progress": 20,
        "generation_error": None,
        "publish_scheduled_at": None,
        "published_at": None,
    }


class TestEventPublisher:
    """Tests for EventPublisher."""

    @pytest.mark.asyncio
    async def test_article_updated_payload(self, mock_redis_client, article):
        publisher = EventPublisher(mock_redis_client, channel="test_channel")
        await publisher.article_updated(article)

        channel, payload = mock_redis_client.publish.await_args.args
        assert channel == "test_channel"
        event = json.loads(payload)
        assert event["type"] == EventType.ARTICLE_UPDATE
        assert event["article_id"] == "art_001"
        assert event["phase"] == "writing"
        assert event["progress"] == 20

    @pytest.mark.asyncio
    async def test_update_failure_is_logged_not_raised(self, article):
        redis_client = AsyncMock()
        redis_client.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        await EventPublisher(redis_client).article_updated(article)

    @pytest.mark.asyncio
    async def test_published_hook_propagates_failure(self, article):
        redis_client = AsyncMock()
        redis_client.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        with pytest.raises(RedisConnectionError):
            await EventPublisher(redis_client).article_published(article)
