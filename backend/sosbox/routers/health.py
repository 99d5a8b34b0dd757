"""Health check endpoint."""

from fastapi import APIRouter, Depends

from sosbox import __version__
from sosbox.dependencies import get_store
from sosbox.stores import BoxStore

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(store: BoxStore = Depends(get_store)) -> dict:
    """Liveness probe reporting the active storage backend."""
    return {
        "ok": True,
        "service": "sos-box",
        "storage": store.backend,
        "version": __version__,
    }
