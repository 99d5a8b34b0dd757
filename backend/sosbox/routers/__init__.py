"""API routers."""

from sosbox.routers.boxes import router as boxes_router
from sosbox.routers.health import router as health_router
from sosbox.routers.ingest import router as ingest_router

__all__ = [
    "boxes_router",
    "health_router",
    "ingest_router",
]
