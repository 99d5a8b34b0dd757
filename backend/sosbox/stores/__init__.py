"""Box store backends."""

from sosbox.config import Settings
from sosbox.stores.base import BoxStore, StorageError
from sosbox.stores.file import JsonFileStore
from sosbox.stores.sql import SqlBoxStore


def create_store(settings: Settings) -> BoxStore:
    """Build the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "sql":
        return SqlBoxStore(settings.database_url, echo=settings.debug)
    return JsonFileStore(settings.data_file)


__all__ = [
    "BoxStore",
    "JsonFileStore",
    "SqlBoxStore",
    "StorageError",
    "create_store",
]
