"""Shared fixtures: temporary stores and an HTTP client bound to the app."""

from collections.abc import AsyncIterator, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from sosbox.config import Settings
from sosbox.main import create_app
from sosbox.stores import BoxStore, JsonFileStore, SqlBoxStore


@pytest.fixture
def data_file(tmp_path):
    """Location of the JSON data file (parent directory not yet created)."""
    return tmp_path / "data" / "boxes.json"


@pytest.fixture
def database_url(tmp_path) -> str:
    """SQLite database in the test's temporary directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'sosbox.db'}"


@pytest.fixture
async def file_store(data_file) -> AsyncIterator[JsonFileStore]:
    store = JsonFileStore(data_file)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def sql_store(database_url) -> AsyncIterator[SqlBoxStore]:
    store = SqlBoxStore(database_url)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(params=["file", "sql"])
async def store(request, data_file, database_url) -> AsyncIterator[BoxStore]:
    """Each contract test runs once per backend."""
    if request.param == "file":
        box_store: BoxStore = JsonFileStore(data_file)
    else:
        box_store = SqlBoxStore(database_url)
    await box_store.initialize()
    yield box_store
    await box_store.close()


@pytest.fixture
def make_settings(data_file, database_url) -> Callable[..., Settings]:
    """Build settings isolated from the environment and any .env file."""

    def _make(**overrides) -> Settings:
        values = {
            "storage_backend": "file",
            "data_file": str(data_file),
            "database_url": database_url,
            "api_key": None,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def make_client(make_settings):
    """Factory for clients against an app wired to an already initialized store."""

    def _make(store: BoxStore, **overrides) -> AsyncClient:
        app = create_app(make_settings(storage_backend=store.backend, **overrides), store=store)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _make


@pytest.fixture
async def client(store, make_client) -> AsyncIterator[AsyncClient]:
    """Client without an API key, parametrized over both backends."""
    async with make_client(store) as ac:
        yield ac
