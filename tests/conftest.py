"""Pytest configuration and fixtures."""
import asyncio
import copy
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from pymongo.errors import DuplicateKeyError

from consumer.pipeline import GenerationPipeline
from consumer.publish_scheduler import PublishScheduler
from consumer.worker import GenerationWorker
from database.repositories.article_repo import ArticleRepository
from database.repositories.queue_repo import QueueRepository


FIXED_NOW = datetime(2024, 2, 4, 10, 30, tzinfo=timezone.utc)


# In-memory stand-in for the slice of the motor collection API the
# repositories use: equality, $in, $ne and $lte filters; $set, $inc and
# $unset updates; sorted find_one_and_update; unique _id and active_key.

def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for op, operand in condition.items():
            if op == "$in" and value not in operand:
                return False
            if op == "$ne" and value == operand:
                return False
            if op == "$lte" and (value is None or value > operand):
                return False
        return True
    return value == condition


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(
        _matches_condition(document.get(field), condition)
        for field, condition in query.items()
    )


def _sorted(documents: List[Dict[str, Any]], sort) -> List[Dict[str, Any]]:
    for field, direction in reversed(sort):
        documents = sorted(documents, key=lambda doc: doc.get(field), reverse=direction == -1)
    return documents


class InMemoryCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self.documents = documents

    def sort(self, key_or_list, direction: Optional[int] = None):
        sort = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        self.documents = _sorted(self.documents, sort)
        return self

    def skip(self, count: int):
        self.documents = self.documents[count:]
        return self

    def limit(self, count: int):
        self.documents = self.documents[:count]
        return self

    async def to_list(self, length: Optional[int] = None):
        docs = self.documents if length is None else self.documents[:length]
        return [copy.deepcopy(doc) for doc in docs]


class InMemoryCollection:
    def __init__(self, unique_fields=("_id",)):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.unique_fields = unique_fields

    def _check_unique(self, document: Dict[str, Any], ignore_id: Any = None):
        for field in self.unique_fields:
            value = document.get(field)
            if value is None:
                continue
            for other in self.documents.values():
                if other["_id"] != ignore_id and other.get(field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error: {field}={value}")

    @staticmethod
    def _apply(document: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        updated = copy.deepcopy(document)
        for field, value in update.get("$set", {}).items():
            updated[field] = value
        for field, amount in update.get("$inc", {}).items():
            updated[field] = updated.get(field, 0) + amount
        for field in update.get("$unset", {}):
            updated.pop(field, None)
        return updated

    async def insert_one(self, document: Dict[str, Any]):
        self._check_unique(document)
        self.documents[document["_id"]] = copy.deepcopy(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query: Dict[str, Any]):
        for document in self.documents.values():
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        query = query or {}
        return InMemoryCursor([doc for doc in self.documents.values() if _matches(doc, query)])

    async def find_one_and_update(self, query, update, sort=None, upsert=False, return_document=None):
        candidates = [doc for doc in self.documents.values() if _matches(doc, query)]
        if sort:
            candidates = _sorted(candidates, sort)
        if not candidates:
            if not upsert:
                return None
            seed = {k: v for k, v in query.items() if not isinstance(v, dict)}
            updated = self._apply(seed, update)
            self.documents[updated["_id"]] = updated
            return copy.deepcopy(updated)

        updated = self._apply(candidates[0], update)
        self._check_unique(updated, ignore_id=updated["_id"])
        self.documents[updated["_id"]] = updated
        return copy.deepcopy(updated)

    async def delete_one(self, query: Dict[str, Any]):
        for key, document in list(self.documents.items()):
            if _matches(document, query):
                del self.documents[key]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return sum(1 for doc in self.documents.values() if _matches(doc, query))


class InMemoryDatabase:
    def __init__(self):
        self.articles = InMemoryCollection()
        self.generation_queue = InMemoryCollection(unique_fields=("_id", "active_key"))
        self.counters = InMemoryCollection()


class ScriptedGenerator:
    """
    Generation capability double.

    Returns canned results per operation; ``fail`` queues exceptions that are
    raised before falling back to the canned result.
    """

    def __init__(self):
        self.calls: List[str] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.results: Dict[str, Any] = {
            "research": {"summary": "Background", "sources": [{"title": "Docs", "url": "https://example.com/docs"}]},
            "outline": ["Intro", "Body", "Conclusion"],
            "write": "# Draft\n\nGenerated article body.",
            "select_image": {"url": "https://images.example.com/cover.jpg", "alt": "Cover"},
            "quality_check": [],
            "validate": [],
            "revise": "# Revised\n\nImproved article body.",
            "seo_audit": {"meta_title": "Title", "meta_description": "Description"},
        }
        self.gate: Optional[asyncio.Event] = None
        self.gated_operation = "research"

    def fail(self, operation: str, error: Exception, times: int = 1):
        self.failures.setdefault(operation, []).extend([error] * times)

    async def _respond(self, operation: str):
        self.calls.append(operation)
        if self.gate is not None and operation == self.gated_operation:
            await self.gate.wait()
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)
        return copy.deepcopy(self.results[operation])

    async def research(self, topic, keywords, notes=None):
        return await self._respond("research")

    async def outline(self, title, keywords, research_data):
        return await self._respond("outline")

    async def write(self, outline, research_data):
        return await self._respond("write")

    async def select_image(self, title, keywords):
        return await self._respond("select_image")

    async def quality_check(self, content):
        return await self._respond("quality_check")

    async def validate(self, content):
        return await self._respond("validate")

    async def revise(self, content, issues):
        return await self._respond("revise")

    async def seo_audit(self, content, keywords):
        return await self._respond("seo_audit")


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def article_repo(db):
    return ArticleRepository(db)


@pytest.fixture
def queue_repo(db):
    """Queue with three attempts and 60s/120s backoff."""
    return QueueRepository(db, max_attempts=3, base_delay=60.0, max_delay=3600.0)


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def progress_events():
    return []


@pytest.fixture
def pipeline(article_repo, generator, progress_events):
    async def record(article):
        progress_events.append(article)

    return GenerationPipeline(
        article_repo,
        generator,
        on_progress=record,
        phase_timeout=5.0,
        phase_max_attempts=1,
        retry_base_delay=0.0,
        retry_max_delay=0.0
    )


@pytest.fixture
def mock_events():
    """Event publisher double."""
    events = AsyncMock()
    events.article_updated = AsyncMock(return_value=None)
    events.article_published = AsyncMock(return_value=None)
    return events


@pytest.fixture
def worker(article_repo, queue_repo, pipeline, mock_events):
    return GenerationWorker(
        article_repo,
        queue_repo,
        pipeline,
        events=mock_events,
        worker_id="worker-test",
        poll_interval=0.01
    )


@pytest.fixture
def publish_scheduler(article_repo, mock_events):
    return PublishScheduler(article_repo, on_publish=mock_events.article_published, interval=60)


@pytest.fixture
def mock_redis_client():
    """Create mock Redis client."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def now():
    return FIXED_NOW


@pytest_asyncio.fixture
async def scheduled_article(article_repo, queue_repo):
    """An article in scheduled status with a queue item due at FIXED_NOW."""
    article = await article_repo.create_article("Async Python", ["asyncio", "python"], "Keep it practical")
    await article_repo.transition_status(
        article["_id"], "scheduled", {"generation_scheduled_at": FIXED_NOW}
    )
    item = await queue_repo.enqueue(article["_id"], FIXED_NOW, now=FIXED_NOW)
    return {"article_id": article["_id"], "item": item}
