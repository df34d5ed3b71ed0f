"""Article repository for CRUD and compare-and-set operations on Articles collection."""
from datetime import datetime
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from shared.errors import ConflictError, InvalidTransition, NotFoundError
from shared.status import ArticleStatus, PublishFrequency, sources_for
from shared.utils import generate_article_id, get_utc_now


def build_article_document(
    title: str,
    keywords: Optional[List[str]] = None,
    notes: Optional[str] = None,
    publish_frequency: str = PublishFrequency.ONCE.value,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Build a new article document in the idea state."""
    now = now or get_utc_now()
    return {
        "_id": generate_article_id(),
        "title": title,
        "keywords": list(keywords or []),
        "notes": notes,
        "status": ArticleStatus.IDEA.value,
        "publish_frequency": publish_frequency,
        "generation_scheduled_at": None,
        "publish_scheduled_at": None,
        "generation_started_at": None,
        "generation_completed_at": None,
        "published_at": None,
        "last_published_at": None,
        "publish_count": 0,
        "deleted_at": None,
        "generation_progress": 0,
        "generation_phase": None,
        "generation_error": None,
        "phase_plan": None,
        "research_data": None,
        "sources": [],
        "outline": None,
        "draft_content": None,
        "content": None,
        "cover_image_url": None,
        "cover_image_alt": None,
        "quality_issues": [],
        "validation_issues": [],
        "fact_check_report": None,
        "seo_metadata": None,
        "created_at": now,
        "updated_at": now,
    }


# Content fields reset whenever a new generation run claims the article
GENERATION_RESET_FIELDS = {
    "generation_progress": 0,
    "generation_phase": None,
    "generation_error": None,
    "generation_completed_at": None,
    "phase_plan": None,
    "research_data": None,
    "sources": [],
    "outline": None,
    "draft_content": None,
    "content": None,
    "cover_image_url": None,
    "cover_image_alt": None,
    "quality_issues": [],
    "validation_issues": [],
    "fact_check_report": None,
    "seo_metadata": None,
}


class ArticleRepository:
    """Repository for Article CRUD and guarded status transitions."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.articles

    async def create_article(
        self,
        title: str,
        keywords: Optional[List[str]] = None,
        notes: Optional[str] = None,
        publish_frequency: str = PublishFrequency.ONCE.value
    ) -> Dict[str, Any]:
        """Create a new article record."""
        article = build_article_document(title, keywords, notes, publish_frequency)
        await self.collection.insert_one(article)
        return article

    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        """Get an article by ID."""
        return await self.collection.find_one({"_id": article_id})

    async def get_articles_by_ids(self, article_ids: List[str]) -> List[Dict[str, Any]]:
        """Get multiple articles by their IDs."""
        cursor = self.collection.find({"_id": {"$in": article_ids}})
        return await cursor.to_list(length=len(article_ids))

    async def list_articles(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        skip: int = 0,
        include_deleted: bool = False
    ) -> List[Dict[str, Any]]:
        """List articles with optional status filter."""
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        elif not include_deleted:
            query["status"] = {"$ne": ArticleStatus.DELETED.value}

        cursor = self.collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
        return await cursor.to_list(length=limit)

    async def transition_status(
        self,
        article_id: str,
        target: str,
        fields: Optional[Dict[str, Any]] = None,
        from_statuses: Optional[List[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Compare-and-set the article status.

        Only matches when the stored status may legally move into target
        (or is one of from_statuses when given). Returns the updated document,
        or None when nothing matched.
        """
        allowed = from_statuses if from_statuses is not None else sources_for(target)
        update = {"status": target, "updated_at": get_utc_now()}
        if fields:
            update.update(fields)

        return await self.collection.find_one_and_update(
            {"_id": article_id, "status": {"$in": list(allowed)}},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )

    async def transition_or_raise(
        self,
        article_id: str,
        target: str,
        fields: Optional[Dict[str, Any]] = None,
        from_statuses: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Like transition_status but raises NotFoundError/InvalidTransition on a miss."""
        updated = await self.transition_status(article_id, target, fields, from_statuses)
        if updated is not None:
            return updated

        current = await self.get_article(article_id)
        if current is None:
            raise NotFoundError(f"Article {article_id} not found")
        raise InvalidTransition(current["status"], target)

    async def claim_for_generation(
        self,
        article_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Atomically move a scheduled article to generating.

        Raises ConflictError when another run already holds the article.
        """
        now = now or get_utc_now()
        fields = dict(GENERATION_RESET_FIELDS)
        fields["generation_started_at"] = now

        claimed = await self.transition_status(
            article_id,
            ArticleStatus.GENERATING.value,
            fields,
            from_statuses=[ArticleStatus.SCHEDULED.value]
        )
        if claimed is not None:
            return claimed

        current = await self.get_article(article_id)
        if current is None:
            raise NotFoundError(f"Article {article_id} not found")
        if current["status"] == ArticleStatus.GENERATING.value:
            raise ConflictError(f"Article {article_id} is already generating")
        raise InvalidTransition(current["status"], ArticleStatus.GENERATING.value)

    async def record_phase(
        self,
        article_id: str,
        phase: str,
        progress: Optional[int] = None,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Persist phase outputs and progress while the article is generating."""
        update: Dict[str, Any] = {
            "generation_phase": phase,
            "updated_at": get_utc_now()
        }
        if progress is not None:
            update["generation_progress"] = max(0, min(100, int(progress)))
        if fields:
            update.update(fields)

        return await self.collection.find_one_and_update(
            {"_id": article_id, "status": ArticleStatus.GENERATING.value},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )

    async def complete_generation(
        self,
        article_id: str,
        fields: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Move a generating article to wait_for_publish."""
        now = now or get_utc_now()
        update = {
            "generation_progress": 100,
            "generation_completed_at": now,
            "generation_error": None,
        }
        if fields:
            update.update(fields)
        return await self.transition_status(
            article_id,
            ArticleStatus.WAIT_FOR_PUBLISH.value,
            update,
            from_statuses=[ArticleStatus.GENERATING.value]
        )

    async def fail_generation(
        self,
        article_id: str,
        error_message: str,
        phase: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Move a generating article to failed with an error message."""
        fields: Dict[str, Any] = {"generation_error": error_message}
        if phase:
            fields["generation_phase"] = phase
        return await self.transition_status(
            article_id,
            ArticleStatus.FAILED.value,
            fields,
            from_statuses=[ArticleStatus.GENERATING.value]
        )

    async def update_inputs(
        self,
        article_id: str,
        changes: Dict[str, Any],
        editable_statuses: List[str]
    ) -> Optional[Dict[str, Any]]:
        """Update title/keywords/notes while generation has not started."""
        update = dict(changes)
        update["updated_at"] = get_utc_now()
        return await self.collection.find_one_and_update(
            {"_id": article_id, "status": {"$in": editable_statuses}},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )

    async def set_publish_schedule(
        self,
        article_id: str,
        publish_at: Optional[datetime],
        frequency: str,
        allowed_statuses: List[str]
    ) -> Optional[Dict[str, Any]]:
        """Set or clear the publish time of an article that is not yet published."""
        return await self.collection.find_one_and_update(
            {"_id": article_id, "status": {"$in": allowed_statuses}},
            {
                "$set": {
                    "publish_scheduled_at": publish_at,
                    "publish_frequency": frequency,
                    "updated_at": get_utc_now()
                }
            },
            return_document=ReturnDocument.AFTER
        )

    async def find_due_for_publish(
        self,
        now: datetime,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Articles waiting for publish whose publish time has passed."""
        cursor = self.collection.find({
            "status": ArticleStatus.WAIT_FOR_PUBLISH.value,
            "publish_scheduled_at": {"$ne": None, "$lte": now}
        }).sort("publish_scheduled_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def mark_published(
        self,
        article_id: str,
        due_at: datetime,
        now: datetime
    ) -> Optional[Dict[str, Any]]:
        """
        Publish a one-shot article.

        The filter pins the due time that was read, so a repeated sweep or a
        concurrent instance matches nothing.
        """
        return await self.collection.find_one_and_update(
            {
                "_id": article_id,
                "status": ArticleStatus.WAIT_FOR_PUBLISH.value,
                "publish_scheduled_at": due_at
            },
            {
                "$set": {
                    "status": ArticleStatus.PUBLISHED.value,
                    "published_at": now,
                    "publish_scheduled_at": None,
                    "updated_at": now
                },
                "$inc": {"publish_count": 1}
            },
            return_document=ReturnDocument.AFTER
        )

    async def rearm_recurring(
        self,
        article_id: str,
        due_at: datetime,
        next_at: datetime,
        now: datetime
    ) -> Optional[Dict[str, Any]]:
        """Record a recurring publication and arm the next one in wait_for_publish."""
        return await self.collection.find_one_and_update(
            {
                "_id": article_id,
                "status": ArticleStatus.WAIT_FOR_PUBLISH.value,
                "publish_scheduled_at": due_at
            },
            {
                "$set": {
                    "last_published_at": now,
                    "publish_scheduled_at": next_at,
                    "updated_at": now
                },
                "$inc": {"publish_count": 1}
            },
            return_document=ReturnDocument.AFTER
        )

    async def article_is_live(self, article_id: str) -> bool:
        """Check the article exists and has not been soft-deleted."""
        count = await self.collection.count_documents({
            "_id": article_id,
            "status": {"$ne": ArticleStatus.DELETED.value}
        })
        return count > 0
