# Models module
from .article import ArticleModel
from .queue_item import QueueItemModel

__all__ = ["ArticleModel", "QueueItemModel"]
