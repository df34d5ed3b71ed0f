"""Work queue repository tests."""
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from shared.errors import ConflictError, NotFoundError, SchedulingError


class TestEnqueue:
    """Tests for QueueRepository.enqueue."""

    @pytest.mark.asyncio
    async def test_enqueue_defaults_to_now(self, queue_repo, now):
        item = await queue_repo.enqueue("art_1", None, now=now)
        assert item["scheduled_for_date"] == now
        assert item["status"] == "queued"
        assert item["attempts"] == 0

    @pytest.mark.asyncio
    async def test_enqueue_rejects_past_due_time(self, queue_repo, now):
        with pytest.raises(SchedulingError):
            await queue_repo.enqueue("art_1", now - timedelta(seconds=1), now=now)

    @pytest.mark.asyncio
    async def test_enqueue_rejects_second_active_item(self, queue_repo, now):
        """Test at most one active item per article."""
        await queue_repo.enqueue("art_1", now, now=now)
        with pytest.raises(ConflictError):
            await queue_repo.enqueue("art_1", now + timedelta(hours=1), now=now)

    @pytest.mark.asyncio
    async def test_unique_index_race_maps_to_conflict(self, queue_repo, db, now):
        """Test a concurrent insert losing on active_key raises ConflictError."""
        await queue_repo.enqueue("art_1", now, now=now)
        queue_repo.get_active_for_article = AsyncMock(return_value=None)
        with pytest.raises(ConflictError):
            await queue_repo.enqueue("art_1", now, now=now)
        assert len(db.generation_queue.documents) == 1

    @pytest.mark.asyncio
    async def test_positions_are_monotonic(self, queue_repo, now):
        first = await queue_repo.enqueue("art_1", now, now=now)
        second = await queue_repo.enqueue("art_2", now, now=now)
        assert second["queue_position"] > first["queue_position"]

    @pytest.mark.asyncio
    async def test_completed_item_allows_new_enqueue(self, queue_repo, now):
        item = await queue_repo.enqueue("art_1", now, now=now)
        await queue_repo.claim_next("w1", now)
        await queue_repo.mark_completed(item["_id"], now)

        again = await queue_repo.enqueue("art_1", now, now=now)
        assert again["_id"] != item["_id"]


class TestClaimOrdering:
    """Tests for claim order: due time, then queue position."""

    @pytest.mark.asyncio
    async def test_earliest_due_first(self, queue_repo, now):
        await queue_repo.enqueue("late", now + timedelta(minutes=10), now=now)
        await queue_repo.enqueue("early", now + timedelta(minutes=5), now=now)

        claimed = await queue_repo.claim_next("w1", now + timedelta(minutes=10))
        assert claimed["article_id"] == "early"
        assert claimed["status"] == "processing"
        assert claimed["claimed_by"] == "w1"

    @pytest.mark.asyncio
    async def test_equal_due_time_uses_position(self, queue_repo, now):
        due = now + timedelta(minutes=5)
        for article_id in ("a", "b", "c"):
            await queue_repo.enqueue(article_id, due, now=now)

        order = []
        while True:
            claimed = await queue_repo.claim_next("w1", due)
            if claimed is None:
                break
            order.append(claimed["article_id"])
        assert order == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_not_due_items_stay_queued(self, queue_repo, now):
        await queue_repo.enqueue("art_1", now + timedelta(minutes=5), now=now)
        assert await queue_repo.claim_next("w1", now) is None


class TestReschedule:
    """Tests for reschedule and cancel."""

    @pytest.mark.asyncio
    async def test_reschedule_moves_behind_equal_due_items(self, queue_repo, now):
        """Test a rescheduled item orders like a fresh enqueue."""
        due = now + timedelta(minutes=5)
        first = await queue_repo.enqueue("a", due, now=now)
        await queue_repo.enqueue("b", due, now=now)

        moved = await queue_repo.reschedule(first["_id"], due, now)
        assert moved["scheduled_for_date"] == due

        claimed = await queue_repo.claim_next("w1", due)
        assert claimed["article_id"] == "b"

    @pytest.mark.asyncio
    async def test_reschedule_rejects_past(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now + timedelta(minutes=5), now=now)
        with pytest.raises(SchedulingError):
            await queue_repo.reschedule(item["_id"], now - timedelta(minutes=1), now)
        assert (await queue_repo.get_item(item["_id"]))["scheduled_for_date"] == now + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_reschedule_processing_item_conflicts(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)
        with pytest.raises(ConflictError):
            await queue_repo.reschedule(item["_id"], now + timedelta(hours=1), now)

    @pytest.mark.asyncio
    async def test_reschedule_missing_item(self, queue_repo, now):
        with pytest.raises(NotFoundError):
            await queue_repo.reschedule("q_missing", now, now)

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        assert await queue_repo.cancel(item["_id"]) is True
        assert await queue_repo.cancel(item["_id"]) is False

    @pytest.mark.asyncio
    async def test_cancel_leaves_processing_item(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)
        assert await queue_repo.cancel(item["_id"]) is False
        assert (await queue_repo.get_item(item["_id"]))["status"] == "processing"


class TestMarkFailed:
    """Tests for queue-level retry with backoff."""

    @pytest.mark.asyncio
    async def test_requeues_with_backoff(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)

        retried = await queue_repo.mark_failed(item["_id"], "boom", retryable=True, now=now)
        assert retried["status"] == "queued"
        assert retried["attempts"] == 1
        assert retried["scheduled_for_date"] == now + timedelta(seconds=60)
        assert retried["error_message"] == "boom"

    @pytest.mark.asyncio
    async def test_second_retry_doubles_delay(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)
        await queue_repo.mark_failed(item["_id"], "boom", now=now)

        later = now + timedelta(seconds=60)
        await queue_repo.claim_next("w1", later)
        retried = await queue_repo.mark_failed(item["_id"], "boom", now=later)
        assert retried["scheduled_for_date"] == later + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_fails_after_max_attempts(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        current = now
        for _ in range(3):
            claimed = await queue_repo.claim_next("w1", current)
            assert claimed is not None
            result = await queue_repo.mark_failed(item["_id"], "boom", now=current)
            current = result["scheduled_for_date"]

        assert result["status"] == "failed"
        assert result["attempts"] == 3
        assert "active_key" not in result
        assert await queue_repo.get_active_for_article("a") is None

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, queue_repo, now):
        item = await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)
        result = await queue_repo.mark_failed(item["_id"], "bad content", retryable=False, now=now)
        assert result["status"] == "failed"
        assert result["attempts"] == 1

    @pytest.mark.asyncio
    async def test_stale_claims(self, queue_repo, now):
        await queue_repo.enqueue("a", now, now=now)
        await queue_repo.claim_next("w1", now)
        assert len(await queue_repo.find_stale_claims(now + timedelta(hours=2))) == 1
        assert await queue_repo.find_stale_claims(now - timedelta(minutes=1)) == []
