"""Request body decoding for box and telemetry endpoints."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import parse_qsl

from fastapi import Request
from starlette.datastructures import UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """The request body is too large or cannot be decoded."""


async def read_body(request: Request, max_bytes: int) -> bytes:
    """Read the raw body, refusing anything above ``max_bytes``."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_bytes:
        raise PayloadError("body too large")

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            raise PayloadError("body too large")
        chunks.append(chunk)
    return b"".join(chunks)


def parse_query_string(text: str) -> dict[str, str]:
    """Flatten a URL-encoded string to a dict; the last value of a repeated key wins."""
    return dict(parse_qsl(text, keep_blank_values=True))


async def _single_chunk(body: bytes) -> AsyncIterator[bytes]:
    yield body


async def _parse_multipart(request: Request, body: bytes) -> dict[str, str]:
    parser = MultiPartParser(request.headers, _single_chunk(body))
    form = await parser.parse()
    try:
        return {key: ("" if isinstance(value, UploadFile) else value) for key, value in form.multi_items()}
    finally:
        await form.close()


async def read_payload(request: Request, max_bytes: int) -> Any:
    """Decode the body according to its content type.

    JSON, URL-encoded and multipart forms are understood. Anything else is
    tried as JSON, then as a query string, then returned as text. An empty
    body decodes to None.
    """
    body = await read_body(request, max_bytes)
    if not body.strip():
        return None

    content_type = request.headers.get("content-type", "").lower()
    if "application/x-www-form-urlencoded" in content_type:
        return parse_query_string(body.decode("utf-8", errors="replace"))
    if "multipart/form-data" in content_type:
        try:
            return await _parse_multipart(request, body)
        except MultiPartException as e:
            raise PayloadError(f"invalid form data: {e}") from e

    try:
        return json.loads(body)
    except ValueError as e:
        if "json" in content_type:
            raise PayloadError("invalid json") from e

    text = body.decode("utf-8", errors="replace").strip()
    if "=" in text and not text.startswith(("{", "[")):
        return parse_query_string(text)
    logger.debug(f"Unrecognised body ({content_type or 'no content type'}), passing through as text")
    return text


def request_query(request: Request) -> dict[str, str]:
    """Query parameters as a flat dict."""
    return dict(request.query_params)
