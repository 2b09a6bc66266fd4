"""Route modules."""

from .merge import router as merge_router
from .system import router as system_router
from .tiktok import router as tiktok_router

__all__ = ["merge_router", "system_router", "tiktok_router"]
