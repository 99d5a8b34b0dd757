"""Shared API key check and CORS headers for the /api surface."""

import secrets

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from sosbox.config import Settings

API_PREFIX = "/api"
API_KEY_HEADER = "x-api-key"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "content-type, x-api-key",
    "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
    "Cache-Control": "no-store",
}


def is_api_path(path: str) -> bool:
    return path == API_PREFIX or path.startswith(API_PREFIX + "/")


def is_device_ingest(request: Request) -> bool:
    """Tracker apps post straight to the site root."""
    return request.method == "POST" and request.url.path == "/"


def api_key_matches(presented: str | None, expected: str) -> bool:
    """Constant-time comparison of the presented key."""
    if not presented:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def install_api_guard(app: FastAPI, settings: Settings) -> None:
    """Answer CORS preflights, enforce the API key and add CORS headers.

    The key is checked before routing, so an unknown /api path without a
    valid key is still a 401.
    """

    @app.middleware("http")
    async def api_guard(request: Request, call_next) -> Response:
        path = request.url.path
        if not is_api_path(path):
            response = await call_next(request)
            if is_device_ingest(request):
                response.headers.update(CORS_HEADERS)
            return response

        if request.method == "OPTIONS":
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)

        if settings.auth_enabled and not api_key_matches(
            request.headers.get(API_KEY_HEADER), settings.api_key
        ):
            return JSONResponse(
                {"error": "unauthorized"},
                status_code=status.HTTP_401_UNAUTHORIZED,
                headers=CORS_HEADERS,
            )

        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response
