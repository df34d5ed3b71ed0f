"""Publish scheduler tests."""
import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from consumer.publish_scheduler import PublishScheduler


async def generated_article(article_repo, publish_at, frequency="once"):
    """An article that finished generation and waits for its publish time."""
    article = await article_repo.create_article("Ready", publish_frequency=frequency)
    await article_repo.transition_status(
        article["_id"],
        "wait_for_publish",
        {"publish_scheduled_at": publish_at, "generation_progress": 100},
        from_statuses=["idea"]
    )
    return article["_id"]


class TestSweep:
    """Tests for PublishScheduler.sweep."""

    @pytest.mark.asyncio
    async def test_publishes_due_article(self, publish_scheduler, article_repo, mock_events, now):
        article_id = await generated_article(article_repo, now - timedelta(minutes=1))

        result = await publish_scheduler.sweep(now)

        assert result == {"checked": 1, "published": [article_id], "failed": []}
        article = await article_repo.get_article(article_id)
        assert article["status"] == "published"
        assert article["published_at"] == now
        assert article["publish_scheduled_at"] is None
        assert article["publish_count"] == 1
        mock_events.article_published.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_future_articles_are_not_published(self, publish_scheduler, article_repo, now):
        article_id = await generated_article(article_repo, now + timedelta(minutes=1))
        result = await publish_scheduler.sweep(now)
        assert result["checked"] == 0
        assert (await article_repo.get_article(article_id))["status"] == "wait_for_publish"

    @pytest.mark.asyncio
    async def test_article_without_publish_time_is_ignored(self, publish_scheduler, article_repo, now):
        article = await article_repo.create_article("No date")
        await article_repo.transition_status(
            article["_id"], "wait_for_publish", from_statuses=["idea"]
        )
        assert (await publish_scheduler.sweep(now))["checked"] == 0

    @pytest.mark.asyncio
    async def test_second_sweep_is_noop(self, publish_scheduler, article_repo, mock_events, now):
        """Test the same due article is published exactly once."""
        await generated_article(article_repo, now - timedelta(minutes=1))

        await publish_scheduler.sweep(now)
        second = await publish_scheduler.sweep(now + timedelta(minutes=1))

        assert second == {"checked": 0, "published": [], "failed": []}
        assert mock_events.article_published.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_update_is_detected(self, publish_scheduler, article_repo, now):
        """Test a sweep holding a stale read publishes nothing."""
        article_id = await generated_article(article_repo, now - timedelta(minutes=1))
        stale = await article_repo.find_due_for_publish(now)
        await publish_scheduler.sweep(now)

        assert await publish_scheduler._publish_one(stale[0], now) is False
        assert (await article_repo.get_article(article_id))["publish_count"] == 1

    @pytest.mark.asyncio
    async def test_hook_failure_leaves_article_due(self, article_repo, now):
        """Test a failing publish hook is retried on the next sweep."""
        hook = AsyncMock(side_effect=[RedisConnectionError("redis down"), None])
        scheduler = PublishScheduler(article_repo, on_publish=hook, interval=60)
        due = now - timedelta(minutes=1)
        article_id = await generated_article(article_repo, due)

        first = await scheduler.sweep(now)
        assert first["failed"] == [article_id]
        article = await article_repo.get_article(article_id)
        assert article["status"] == "wait_for_publish"
        assert article["publish_scheduled_at"] == due

        second = await scheduler.sweep(now + timedelta(hours=1))
        assert second["published"] == [article_id]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, article_repo, now):
        good_id = await generated_article(article_repo, now - timedelta(minutes=2))
        bad_id = await generated_article(article_repo, now - timedelta(minutes=1))

        async def hook(article):
            if article["_id"] == bad_id:
                raise RuntimeError("downstream rejected")

        result = await PublishScheduler(article_repo, on_publish=hook).sweep(now)
        assert result["published"] == [good_id]
        assert result["failed"] == [bad_id]


class TestRecurring:
    """Tests for recurring publish schedules."""

    @pytest.mark.asyncio
    async def test_daily_rearms_next_day(self, publish_scheduler, article_repo, now):
        due = now - timedelta(minutes=5)
        article_id = await generated_article(article_repo, due, frequency="daily")

        result = await publish_scheduler.sweep(now)

        assert result["published"] == [article_id]
        article = await article_repo.get_article(article_id)
        assert article["status"] == "wait_for_publish"
        assert article["publish_scheduled_at"] == due + timedelta(days=1)
        assert article["last_published_at"] == now
        assert article["published_at"] is None
        assert article["publish_count"] == 1

    @pytest.mark.asyncio
    async def test_weekly_runs_again_next_week(self, publish_scheduler, article_repo, now):
        due = now - timedelta(minutes=5)
        article_id = await generated_article(article_repo, due, frequency="weekly")

        await publish_scheduler.sweep(now)
        assert (await publish_scheduler.sweep(now + timedelta(days=1)))["checked"] == 0

        next_run = now + timedelta(days=7)
        result = await publish_scheduler.sweep(next_run)
        assert result["published"] == [article_id]
        article = await article_repo.get_article(article_id)
        assert article["publish_count"] == 2
        assert article["publish_scheduled_at"] == due + timedelta(days=14)


class TestScenario:
    """End-to-end scenario: generate, then publish once."""

    @pytest.mark.asyncio
    async def test_generate_then_publish(self, worker, publish_scheduler, article_repo, queue_repo, now):
        article = await article_repo.create_article("A1")
        article_id = article["_id"]
        due = now + timedelta(hours=1)
        await article_repo.transition_status(article_id, "scheduled", {"generation_scheduled_at": due})
        await queue_repo.enqueue(article_id, due, now=now)

        assert await worker.process_next(now) is None
        await worker.process_next(due)

        generated = await article_repo.get_article(article_id)
        assert generated["status"] == "wait_for_publish"
        assert generated["generation_progress"] == 100

        await article_repo.set_publish_schedule(
            article_id, now + timedelta(hours=2), "once", ["wait_for_publish"]
        )
        sweep_at = now + timedelta(hours=2, minutes=1)
        assert (await publish_scheduler.sweep(sweep_at))["published"] == [article_id]

        published = await article_repo.get_article(article_id)
        assert published["status"] == "published"
        assert published["published_at"] == sweep_at

        assert (await publish_scheduler.sweep(now + timedelta(hours=3)))["checked"] == 0


class TestLoop:
    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self, article_repo):
        scheduler = PublishScheduler(article_repo, interval=3600)
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.01)

        await scheduler.stop()
        await asyncio.wait_for(task, timeout=1)
        assert not scheduler.running
