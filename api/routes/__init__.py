# Routes module
from .articles import router as articles_router
from .scheduler import router as scheduler_router

__all__ = ["articles_router", "scheduler_router"]
