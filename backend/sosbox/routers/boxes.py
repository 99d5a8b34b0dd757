"""Box CRUD endpoints used by the map UI."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from sosbox.config import Settings
from sosbox.dependencies import get_app_settings, get_store
from sosbox.normalizer import normalize_boxes
from sosbox.payloads import read_payload
from sosbox.schemas.box import BoxSummary
from sosbox.services.status import DEFAULT_LOW_BATTERY, DEFAULT_OFFLINE_AFTER_MIN, summarize
from sosbox.stores import BoxStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/boxes", tags=["boxes"])


@router.get("")
async def list_boxes(store: BoxStore = Depends(get_store)) -> list[dict]:
    """List all boxes."""
    return [box.to_json() for box in await store.get_all()]


@router.get("/summary", response_model=BoxSummary)
async def box_summary(
    store: BoxStore = Depends(get_store),
    offline_after_min: float = Query(
        default=DEFAULT_OFFLINE_AFTER_MIN, ge=0, description="Minutes without a report before a box is offline"
    ),
    low_battery: int = Query(
        default=DEFAULT_LOW_BATTERY, ge=0, le=150, description="Battery percent at or below which a box is low"
    ),
) -> BoxSummary:
    """Online / offline / low-battery counts with runtime estimates."""
    return summarize(await store.get_all(), offline_after_min, low_battery)


@router.post("/upsert")
async def upsert_boxes(
    request: Request,
    store: BoxStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Insert or merge one box, an array of boxes, or ``{boxes: [...]}``."""
    payload = await read_payload(request, settings.max_body_bytes)
    updates = normalize_boxes(payload)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no valid boxes")

    result = await store.upsert_many(updates)
    logger.info(f"Box upsert: {result.upserted} of {len(updates)} applied, {result.total} stored")
    return {"ok": True, "upserted": result.upserted, "total": result.total}


@router.delete("")
async def delete_all_boxes(store: BoxStore = Depends(get_store)) -> dict:
    """Delete every box."""
    await store.delete_all()
    logger.info("Deleted all boxes")
    return {"ok": True}


@router.delete("/{box_id}")
async def delete_box(box_id: str, store: BoxStore = Depends(get_store)) -> dict:
    """Delete a single box; a missing id reports ``deleted: 0``."""
    deleted = await store.delete_one(box_id)
    return {"ok": True, "deleted": deleted}


@router.get("/{box_id}/wifi_count")
async def get_wifi_count(box_id: str, store: BoxStore = Depends(get_store)) -> dict:
    """Read the wifi counter of a box."""
    return {"wifi_count": await store.get_wifi_count(box_id)}


@router.post("/{box_id}/wifi_count")
async def set_wifi_count(
    box_id: str,
    request: Request,
    store: BoxStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Write the wifi counter of a box from ``{wifi_count|wifiCount|count}``."""
    payload = await read_payload(request, settings.max_body_bytes)
    raw = 0
    if isinstance(payload, dict):
        for key in ("wifi_count", "wifiCount", "count"):
            if payload.get(key) is not None:
                raw = payload[key]
                break
    count = await store.set_wifi_count(box_id, raw)
    return {"ok": True, "wifi_count": count}
