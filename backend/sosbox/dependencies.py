"""FastAPI dependencies resolving per-app state."""

from fastapi import Request

from sosbox.config import Settings
from sosbox.stores import BoxStore


def get_store(request: Request) -> BoxStore:
    """Dependency that provides the box store created at startup."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    """Dependency that provides the settings the app was built with."""
    return request.app.state.settings
