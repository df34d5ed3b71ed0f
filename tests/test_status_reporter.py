"""Status reporter tests."""
import pytest
from datetime import timedelta

from api.services.status_reporter import StatusReporter
from shared.errors import NotFoundError, RecoverableError


@pytest.fixture
def reporter(article_repo, queue_repo):
    return StatusReporter(article_repo, queue_repo)


class TestGetStatus:
    """Tests for StatusReporter.get_status."""

    @pytest.mark.asyncio
    async def test_unknown_article(self, reporter):
        with pytest.raises(NotFoundError):
            await reporter.get_status("art_missing")

    @pytest.mark.asyncio
    async def test_idea_has_no_progress(self, reporter, article_repo):
        article = await article_repo.create_article("Idea")
        status = await reporter.get_status(article["_id"])
        assert status["status"] == "idea"
        assert status["progress"] == 0
        assert status["queue_status"] is None
        assert status["attempts"] == 0

    @pytest.mark.asyncio
    async def test_scheduled_reports_queue_metadata(self, reporter, scheduled_article, now):
        status = await reporter.get_status(scheduled_article["article_id"])
        assert status["status"] == "scheduled"
        assert status["display_status"] == "idea"
        assert status["progress"] == 0
        assert status["scheduled_for"] == now
        assert status["queue_status"] == "queued"

    @pytest.mark.asyncio
    async def test_generating_uses_persisted_progress(self, reporter, article_repo, queue_repo, scheduled_article, now):
        article_id = scheduled_article["article_id"]
        await queue_repo.claim_next("w1", now)
        await article_repo.claim_for_generation(article_id, now)
        await article_repo.record_phase(article_id, "writing", 20)

        status = await reporter.get_status(article_id)
        assert status["status"] == "generating"
        assert status["phase"] == "writing"
        assert status["progress"] == 20
        assert status["started_at"] == now
        assert status["queue_status"] == "processing"
        assert status["error"] is None

    @pytest.mark.asyncio
    async def test_finished_article_ignores_stale_progress(self, reporter, article_repo):
        """Test wait_for_publish always reports 100 even if the stored value lags."""
        article = await article_repo.create_article("Done")
        await article_repo.transition_status(
            article["_id"], "wait_for_publish", {"generation_progress": 80}, from_statuses=["idea"]
        )
        status = await reporter.get_status(article["_id"])
        assert status["progress"] == 100
        assert status["display_status"] == "generated"

    @pytest.mark.asyncio
    async def test_error_only_exposed_when_failed(self, reporter, worker, generator, scheduled_article, now):
        article_id = scheduled_article["article_id"]
        generator.fail("research", RecoverableError("HTTP 503"))
        await worker.process_next(now)

        # Retry pending: article is scheduled again, old error hidden
        status = await reporter.get_status(article_id)
        assert status["status"] == "scheduled"
        assert status["error"] is None
        assert status["attempts"] == 1
        assert status["scheduled_for"] == now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_failed_article_exposes_error(self, reporter, article_repo):
        article = await article_repo.create_article("Broken")
        await article_repo.transition_status(
            article["_id"], "failed",
            {"generation_error": "writing: policy", "generation_progress": 20},
            from_statuses=["idea"]
        )
        status = await reporter.get_status(article["_id"])
        assert status["error"] == "writing: policy"
        assert status["progress"] == 20
