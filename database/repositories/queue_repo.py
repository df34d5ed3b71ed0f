"""Queue repository: time-ordered generation requests in the generation_queue collection."""
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from shared.config import settings
from shared.errors import ConflictError, NotFoundError, SchedulingError
from shared.status import ACTIVE_QUEUE_STATUSES, QueueStatus, SchedulingType
from shared.utils import (
    calculate_exponential_backoff,
    ensure_utc,
    generate_queue_item_id,
    get_utc_now,
)

POSITION_COUNTER = "generation_queue_position"

ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_QUEUE_STATUSES)


def build_queue_item_document(
    article_id: str,
    scheduled_for: datetime,
    queue_position: int,
    scheduling_type: str = SchedulingType.MANUAL.value,
    attempts: int = 0,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Build a new queued item document."""
    now = now or get_utc_now()
    return {
        "_id": generate_queue_item_id(),
        "article_id": article_id,
        "scheduled_for_date": scheduled_for,
        "queue_position": queue_position,
        "scheduling_type": scheduling_type,
        "status": QueueStatus.QUEUED.value,
        "attempts": attempts,
        "error_message": None,
        "active_key": article_id,
        "claimed_by": None,
        "processing_started_at": None,
        "completed_at": None,
        "created_at": now,
        "updated_at": now,
    }


def resolve_due_time(due_at: Optional[datetime], now: datetime) -> datetime:
    """Normalize a requested due time; None means immediately."""
    if due_at is None:
        return now
    due = ensure_utc(due_at)
    if due < now:
        raise SchedulingError("Scheduled time must not be in the past")
    return due


class QueueRepository:
    """Repository for the generation work queue."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None
    ):
        self.collection = db.generation_queue
        self.counters = db.counters
        self.max_attempts = max_attempts or settings.max_retry_attempts
        self.base_delay = base_delay if base_delay is not None else settings.retry_base_delay
        self.max_delay = max_delay if max_delay is not None else settings.retry_max_delay

    async def next_position(self) -> int:
        """Monotonic counter used to break ties between equal due times."""
        counter = await self.counters.find_one_and_update(
            {"_id": POSITION_COUNTER},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return counter["value"]

    async def enqueue(
        self,
        article_id: str,
        due_at: Optional[datetime] = None,
        scheduling_type: str = SchedulingType.MANUAL.value,
        attempts: int = 0,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Add a generation request for an article."""
        now = now or get_utc_now()
        scheduled_for = resolve_due_time(due_at, now)

        if await self.get_active_for_article(article_id):
            raise ConflictError(f"Article {article_id} already has an active queue item")

        position = await self.next_position()
        item = build_queue_item_document(
            article_id, scheduled_for, position, scheduling_type, attempts, now
        )

        try:
            await self.collection.insert_one(item)
        except DuplicateKeyError as e:
            raise ConflictError(f"Article {article_id} already has an active queue item") from e
        return item

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Get a queue item by ID."""
        return await self.collection.find_one({"_id": item_id})

    async def get_active_for_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        """Get the queued or processing item for an article, if any."""
        return await self.collection.find_one({
            "article_id": article_id,
            "status": {"$in": ACTIVE_STATUS_VALUES}
        })

    async def reschedule(
        self,
        item_id: str,
        new_due_at: datetime,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Move a queued item to a new due time.

        One atomic update with a fresh queue position, ordering it exactly as
        a cancel followed by a new enqueue would.
        """
        now = now or get_utc_now()
        scheduled_for = resolve_due_time(new_due_at, now)
        position = await self.next_position()

        updated = await self.collection.find_one_and_update(
            {"_id": item_id, "status": QueueStatus.QUEUED.value},
            {
                "$set": {
                    "scheduled_for_date": scheduled_for,
                    "queue_position": position,
                    "updated_at": now
                }
            },
            return_document=ReturnDocument.AFTER
        )
        if updated is not None:
            return updated

        current = await self.get_item(item_id)
        if current is not None and current["status"] == QueueStatus.PROCESSING.value:
            raise ConflictError(f"Queue item {item_id} is already processing")
        raise NotFoundError(f"Queued item {item_id} not found")

    async def cancel(self, item_id: str) -> bool:
        """Remove a queued item. No-op when processing or missing."""
        result = await self.collection.delete_one({
            "_id": item_id,
            "status": QueueStatus.QUEUED.value
        })
        return result.deleted_count > 0

    async def cancel_for_article(self, article_id: str) -> bool:
        """Remove the queued item of an article, if any."""
        result = await self.collection.delete_one({
            "article_id": article_id,
            "status": QueueStatus.QUEUED.value
        })
        return result.deleted_count > 0

    async def claim_next(
        self,
        worker_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Atomically claim the earliest due item (due time, then queue position)."""
        now = now or get_utc_now()
        return await self.collection.find_one_and_update(
            {
                "status": QueueStatus.QUEUED.value,
                "scheduled_for_date": {"$lte": now}
            },
            {
                "$set": {
                    "status": QueueStatus.PROCESSING.value,
                    "claimed_by": worker_id,
                    "processing_started_at": now,
                    "updated_at": now
                }
            },
            sort=[("scheduled_for_date", 1), ("queue_position", 1)],
            return_document=ReturnDocument.AFTER
        )

    async def mark_completed(
        self,
        item_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Archive a processed item as completed."""
        now = now or get_utc_now()
        return await self.collection.find_one_and_update(
            {"_id": item_id, "status": QueueStatus.PROCESSING.value},
            {
                "$set": {
                    "status": QueueStatus.COMPLETED.value,
                    "completed_at": now,
                    "error_message": None,
                    "updated_at": now
                },
                "$unset": {"active_key": ""}
            },
            return_document=ReturnDocument.AFTER
        )

    def retry_delay(self, attempts: int) -> float:
        """Backoff before the next attempt, doubling per failed attempt."""
        return calculate_exponential_backoff(attempts - 1, self.base_delay, self.max_delay)

    async def mark_failed(
        self,
        item_id: str,
        error_message: str,
        retryable: bool = True,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Record a failed attempt.

        Re-queues with exponential backoff while attempts remain, otherwise
        leaves the item failed.
        """
        now = now or get_utc_now()
        item = await self.collection.find_one_and_update(
            {"_id": item_id, "status": QueueStatus.PROCESSING.value},
            {
                "$inc": {"attempts": 1},
                "$set": {"error_message": error_message, "updated_at": now}
            },
            return_document=ReturnDocument.AFTER
        )
        if item is None:
            return None

        attempts = item["attempts"]
        if retryable and attempts < self.max_attempts:
            delay = self.retry_delay(attempts)
            position = await self.next_position()
            return await self.collection.find_one_and_update(
                {"_id": item_id, "status": QueueStatus.PROCESSING.value},
                {
                    "$set": {
                        "status": QueueStatus.QUEUED.value,
                        "scheduled_for_date": now + timedelta(seconds=delay),
                        "queue_position": position,
                        "claimed_by": None,
                        "processing_started_at": None,
                        "updated_at": now
                    }
                },
                return_document=ReturnDocument.AFTER
            )

        return await self.collection.find_one_and_update(
            {"_id": item_id, "status": QueueStatus.PROCESSING.value},
            {
                "$set": {
                    "status": QueueStatus.FAILED.value,
                    "completed_at": now,
                    "updated_at": now
                },
                "$unset": {"active_key": ""}
            },
            return_document=ReturnDocument.AFTER
        )

    async def release_claim(
        self,
        item_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Put a processing item back to queued without counting an attempt."""
        now = now or get_utc_now()
        return await self.collection.find_one_and_update(
            {"_id": item_id, "status": QueueStatus.PROCESSING.value},
            {
                "$set": {
                    "status": QueueStatus.QUEUED.value,
                    "claimed_by": None,
                    "processing_started_at": None,
                    "updated_at": now
                }
            },
            return_document=ReturnDocument.AFTER
        )

    async def delete_item(self, item_id: str) -> bool:
        """Delete a queue item regardless of status (orphans, stale claims)."""
        result = await self.collection.delete_one({"_id": item_id})
        return result.deleted_count > 0

    async def list_items(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> List[Dict[str, Any]]:
        """List queue items in processing order."""
        query = {}
        if status:
            query["status"] = status

        cursor = (
            self.collection.find(query)
            .sort([("scheduled_for_date", 1), ("queue_position", 1)])
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def list_active_items(self, limit: int = 500) -> List[Dict[str, Any]]:
        """Queued and processing items."""
        cursor = self.collection.find({
            "status": {"$in": ACTIVE_STATUS_VALUES}
        }).limit(limit)
        return await cursor.to_list(length=limit)

    async def find_stale_claims(self, stale_before: datetime) -> List[Dict[str, Any]]:
        """Processing items claimed before the cutoff (worker likely died)."""
        cursor = self.collection.find({
            "status": QueueStatus.PROCESSING.value,
            "processing_started_at": {"$lte": stale_before}
        })
        return await cursor.to_list(length=None)
