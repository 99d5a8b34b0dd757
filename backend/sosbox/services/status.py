"""Derived display status of boxes (online / low battery / offline)."""

from collections.abc import Iterable

from sosbox.normalizer import BATTERY_RANGE, clamp_int, now_ms
from sosbox.schemas.box import Box, BoxStatusItem, BoxSummary, StatusCounts

DEFAULT_LOW_BATTERY = 15
DEFAULT_OFFLINE_AFTER_MIN = 30

# Powerbank cell voltage and DC-DC conversion efficiency
CELL_VOLTAGE = 3.7
CONVERSION_EFFICIENCY = 0.85


def compute_status(
    box: Box,
    offline_after_min: float = DEFAULT_OFFLINE_AFTER_MIN,
    now: int | None = None,
    low_battery: int = DEFAULT_LOW_BATTERY,
) -> str:
    """Classify a box; a low battery wins over being offline."""
    current = now if now is not None else now_ms()
    offline_after_ms = max(1, offline_after_min) * 60 * 1000
    battery = clamp_int(box.battery_percent, *BATTERY_RANGE)
    if battery <= low_battery:
        return "low"
    if not box.last_seen:
        return "offline"
    if current - box.last_seen > offline_after_ms:
        return "offline"
    return "online"


def estimate_runtime_hours(powerbank_mah: float, load_w: float) -> float:
    """Hours a full powerbank can drive the given load."""
    usable_wh = powerbank_mah * CELL_VOLTAGE / 1000 * CONVERSION_EFFICIENCY
    return usable_wh / max(0.1, load_w)


def summarize(
    boxes: Iterable[Box],
    offline_after_min: float = DEFAULT_OFFLINE_AFTER_MIN,
    low_battery: int = DEFAULT_LOW_BATTERY,
    now: int | None = None,
) -> BoxSummary:
    """Status counts plus per-box runtime estimates."""
    current = now if now is not None else now_ms()
    counts = StatusCounts()
    items = []
    for box in boxes:
        status = compute_status(box, offline_after_min, current, low_battery)
        setattr(counts, status, getattr(counts, status) + 1)
        full_hours = estimate_runtime_hours(box.powerbank_mah, box.load_w)
        items.append(
            BoxStatusItem(
                id=box.id,
                name=box.name,
                status=status,
                battery_percent=box.battery_percent,
                full_hours=round(full_hours, 2),
                remaining_hours=round(full_hours * box.battery_percent / 100, 2),
            )
        )
    return BoxSummary(counts=counts, boxes=items)
