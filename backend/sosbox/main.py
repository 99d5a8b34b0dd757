"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from sosbox import __version__
from sosbox.auth import CORS_HEADERS, install_api_guard, is_api_path, is_device_ingest
from sosbox.config import Settings, get_settings
from sosbox.payloads import PayloadError
from sosbox.routers import boxes_router, health_router, ingest_router
from sosbox.stores import BoxStore, StorageError, create_store

logger = logging.getLogger(__name__)

UI_DOCUMENTS = ("main.html", "index.html")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": message}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail
        if message == HTTPStatus(exc.status_code).phrase:
            message = message.lower()
        return JSONResponse({"error": message}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
        return JSONResponse({"error": message}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(PayloadError)
    async def payload_error(request: Request, exc: PayloadError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        # Runs outside the API guard, so CORS headers are added here
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        headers = CORS_HEADERS if is_api_path(request.url.path) or is_device_ingest(request) else None
        return JSONResponse(
            {"error": str(exc) or "internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=headers,
        )


def mount_ui(app: FastAPI, static_dir: str) -> None:
    """Serve the map UI from ``static_dir``; ``/`` opens its main document."""
    root = Path(static_dir)
    document = next((root / name for name in UI_DOCUMENTS if (root / name).is_file()), None)

    if document is not None:

        @app.get("/", include_in_schema=False)
        async def ui_document() -> FileResponse:
            return FileResponse(document, headers={"Cache-Control": "no-store"})

    app.mount("/", StaticFiles(directory=root, html=True), name="ui")


def create_app(settings: Settings | None = None, store: BoxStore | None = None) -> FastAPI:
    """Build the application around one store chosen from settings."""
    settings = settings or get_settings()
    configure_logging(settings)
    store = store or create_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting SOS BOX backend...")
        await store.initialize()
        logger.info(f"Box store ready: {store!r}")
        if settings.auth_enabled:
            logger.info("API key required for /api requests")

        yield

        logger.info("Shutting down SOS BOX backend...")
        await store.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="SOS BOX",
        description="Map backend and telemetry ingest for SOS BOX emergency kits",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    install_api_guard(app, settings)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(boxes_router)
    app.include_router(ingest_router)

    if settings.static_dir:
        mount_ui(app, settings.static_dir)
    else:

        @app.get("/")
        async def root() -> dict:
            """API info when no UI directory is configured."""
            return {
                "name": "SOS BOX",
                "version": __version__,
                "docs": "/docs",
                "health": "/api/health",
            }

    return app


app = create_app()
