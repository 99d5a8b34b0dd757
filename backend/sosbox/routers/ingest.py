"""Telemetry ingest endpoints for GPS tracker clients (Traccar Client and compatibles)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from sosbox.config import Settings
from sosbox.dependencies import get_app_settings, get_store
from sosbox.normalizer import normalize_position, normalize_positions
from sosbox.payloads import read_payload, request_query
from sosbox.stores import BoxStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


@router.api_route("/api/traccar", methods=["GET", "POST"])
async def traccar_ingest(
    request: Request,
    store: BoxStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Accept one position, an array of positions or ``{positions: [...]}``.

    GET requests (OsmAnd-style) carry the report in the query string; a POST
    with an empty body falls back to the query string too.
    """
    if request.method == "GET":
        payload = request_query(request)
    else:
        payload = await read_payload(request, settings.max_body_bytes)
        if payload is None:
            payload = request_query(request)

    updates = normalize_positions(payload)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no valid positions")

    result = await store.upsert_many(updates)
    logger.info(f"Telemetry: {result.upserted} position(s) stored")
    return {"ok": True, "upserted": result.upserted}


@router.post("/")
async def device_ingest(
    request: Request,
    store: BoxStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """Single report posted straight to the site root by a tracker app.

    Query parameters are merged under the body fields.
    """
    payload = await read_payload(request, settings.max_body_bytes)
    item = request_query(request)
    if isinstance(payload, dict):
        item.update(payload)

    update = normalize_position(item)
    if update is None:
        logger.debug(f"Rejected device report without a position: {payload!r}")
        return JSONResponse(
            {"error": "missing or invalid lat/lon", "received": payload},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    await store.upsert_many([update])
    logger.info(f"Device report stored for {update.device_id or update.name!r}")
    return {"ok": True, "upserted": 1}
