"""Payload normalization for box CRUD payloads and tracker telemetry.

Telemetry clients encode the same facts in several shapes: flat fields,
a nested ``location`` object, a URL-encoded query string hidden in
``location._``, battery as a 0-1 fraction or a percentage, and a handful of
aliases for the device identity. Every numeric field is read through an
ordered tuple of extractors; the first one yielding a finite number wins.

Nothing in this module raises for bad input. Items that cannot produce a
usable update are dropped from the batch.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qsl
from uuid import uuid4

from sosbox.schemas.box import DEFAULT_BOX_NAME, DEFAULT_LOAD_W, BoxUpdate

logger = logging.getLogger(__name__)

Extractor = Callable[[Mapping[str, Any]], float | None]

BATTERY_RANGE = (0, 150)
POWERBANK_RANGE = (0, 1_000_000)
LOAD_RANGE = (0.1, 1000.0)
WIFI_COUNT_RANGE = (0, 100_000)
LAT_RANGE = (-90.0, 90.0)
LNG_RANGE = (-180.0, 180.0)

# Epoch values below this are seconds, not milliseconds (year 5138 in seconds)
_EPOCH_MS_THRESHOLD = 100_000_000_000
# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_EPOCH_MS = 253_402_300_799_999

COORDINATE_KEYS = ("lat", "latitude", "lng", "lon", "longitude", "location")
TIMESTAMP_KEYS = ("timestamp", "fixTime", "deviceTime", "serverTime", "time", "lastSeen", "ts")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_finite(value: Any) -> float | None:
    """Convert numbers and numeric strings to a finite float, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def clamp_number(value: Any, low: float, high: float, default: float | None = None) -> float:
    """Clamp a value into [low, high]; non-finite input yields default (or low)."""
    number = to_finite(value)
    if number is None:
        return low if default is None else default
    return min(high, max(low, number))


def clamp_int(value: Any, low: int, high: int, default: int | None = None) -> int:
    """Round half up and clamp into [low, high]; non-finite input yields default (or low)."""
    number = to_finite(value)
    if number is None:
        return low if default is None else default
    return int(min(high, max(low, math.floor(number + 0.5))))


def normalize_battery(raw: Any) -> int | None:
    """Turn a raw battery reading into a percentage.

    Readings at or below 1 are fractions (0.73 -> 73), anything else is
    already a percentage. The result is clamped to [0, 150].
    """
    value = to_finite(raw)
    if value is None:
        return None
    percent = value * 100 if value <= 1 else value
    return clamp_int(percent, *BATTERY_RANGE)


def parse_timestamp_ms(value: Any) -> int | None:
    """Parse an epoch number, numeric string or ISO-8601 string to epoch ms.

    Seconds, microseconds and nanoseconds are scaled to milliseconds. Times
    before 1970 or after year 9999 are unparseable.
    """
    number = to_finite(value)
    if number is not None:
        if abs(number) < _EPOCH_MS_THRESHOLD:
            number *= 1000
        # Microsecond and nanosecond epochs
        for _ in range(2):
            if number <= MAX_EPOCH_MS:
                break
            number /= 1000
        return int(number) if 0 <= number <= MAX_EPOCH_MS else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        ms = int(parsed.timestamp() * 1000)
        return ms if 0 <= ms <= MAX_EPOCH_MS else None
    return None


def ms_to_iso(ms: int) -> str:
    """Epoch milliseconds to an ISO-8601 UTC string with millisecond precision.

    Values outside 1970..9999 are clamped to that range.
    """
    dt = datetime.fromtimestamp(min(MAX_EPOCH_MS, max(0, ms)) / 1000, UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def _lookup(data: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _location_query(data: Mapping[str, Any]) -> dict[str, str]:
    """Decode the query string some tracker apps put in ``location._``."""
    encoded = _lookup(data, ("location", "_"))
    if not isinstance(encoded, str):
        return {}
    return dict(parse_qsl(encoded, keep_blank_values=True))


def field(*path: str) -> Extractor:
    """Extractor reading a (possibly nested) field."""

    def extract(data: Mapping[str, Any]) -> float | None:
        return to_finite(_lookup(data, path))

    return extract


def location_query(*names: str) -> Extractor:
    """Extractor reading the first finite parameter out of ``location._``."""

    def extract(data: Mapping[str, Any]) -> float | None:
        params = _location_query(data)
        for name in names:
            value = to_finite(params.get(name))
            if value is not None:
                return value
        return None

    return extract


def location_battery(data: Mapping[str, Any]) -> float | None:
    """``location.battery`` as a bare number or as ``{level}``/``{value}``."""
    battery = _lookup(data, ("location", "battery"))
    if isinstance(battery, Mapping):
        level = to_finite(battery.get("level"))
        return level if level is not None else to_finite(battery.get("value"))
    return to_finite(battery)


def first_finite(data: Mapping[str, Any], extractors: tuple[Extractor, ...]) -> float | None:
    """Run extractors in order and return the first finite result."""
    for extract in extractors:
        value = extract(data)
        if value is not None:
            return value
    return None


LATITUDE: tuple[Extractor, ...] = (
    location_query("lat"),
    field("location", "lat"),
    field("location", "latitude"),
    field("lat"),
    field("latitude"),
)

LONGITUDE: tuple[Extractor, ...] = (
    location_query("lon"),
    field("location", "lon"),
    field("location", "lng"),
    field("location", "longitude"),
    field("lng"),
    field("lon"),
    field("longitude"),
)

BATTERY: tuple[Extractor, ...] = (
    location_query("batt", "battery", "batteryLevel"),
    location_battery,
    field("battery"),
    field("batt"),
    field("batteryLevel"),
    field("attributes", "batteryLevel"),
    field("attributes", "battery"),
)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _first_present(data: Mapping[str, Any], *paths: tuple[str, ...]) -> Any:
    """Value of the first path that is present and not None.

    Unlike chaining with `or`, this keeps falsy values like 0.
    """
    for path in paths:
        value = _lookup(data, path)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


def resolve_device_id(data: Mapping[str, Any]) -> str | None:
    """Telemetry identity: device_id, deviceId, device.id, id, deviceName."""
    return _text(
        _first_present(
            data,
            ("device_id",),
            ("deviceId",),
            ("device", "id"),
            ("id",),
            ("deviceName",),
        )
    )


def resolve_name(data: Mapping[str, Any], device_id: str | None) -> str:
    """Display name: name, deviceName, device.name, device id, then the default."""
    name = _text(_first_present(data, ("name",), ("deviceName",), ("device", "name")))
    return name or device_id or DEFAULT_BOX_NAME


def resolve_timestamp(data: Mapping[str, Any], *keys: str) -> int | None:
    """First parseable timestamp among location.timestamp and the given keys."""
    candidates = [("location", "timestamp")] + [(key,) for key in keys]
    for path in candidates:
        value = _lookup(data, path)
        if value is None:
            continue
        parsed = parse_timestamp_ms(value)
        if parsed is not None:
            return parsed
    return None


def _coordinates(data: Mapping[str, Any]) -> tuple[float, float] | None:
    lat = first_finite(data, LATITUDE)
    lng = first_finite(data, LONGITUDE)
    if lat is None or lng is None:
        return None
    return clamp_number(lat, *LAT_RANGE), clamp_number(lng, *LNG_RANGE)


# ---------------------------------------------------------------------------
# Item normalization
# ---------------------------------------------------------------------------


def normalize_position(item: Any) -> BoxUpdate | None:
    """Normalize one telemetry report; None when it carries no usable position."""
    if not isinstance(item, Mapping):
        return None

    coords = _coordinates(item)
    if coords is None:
        return None
    lat, lng = coords

    device_id = resolve_device_id(item)
    fields: dict[str, Any] = {
        "name": resolve_name(item, device_id),
        "lat": lat,
        "lng": lng,
        "status": _text(item.get("status")) or "online",
        "last_seen": resolve_timestamp(item, *TIMESTAMP_KEYS) or now_ms(),
    }
    if device_id:
        fields["device_id"] = device_id

    battery = normalize_battery(first_finite(item, BATTERY))
    if battery is not None:
        fields["battery_percent"] = battery

    return BoxUpdate(**fields)


def normalize_box(item: Any) -> BoxUpdate | None:
    """Normalize one box from the box API.

    A box either carries finite coordinates (a position update) or, for an
    existing box addressed by id or deviceId, no coordinate keys at all (a
    field-only update such as a rename). Anything else is dropped.
    """
    if not isinstance(item, Mapping):
        return None

    box_id = _text(item.get("id"))
    device_id = _text(_first_present(item, ("deviceId",), ("device_id",)))

    fields: dict[str, Any] = {}
    coords = _coordinates(item)
    if coords is not None:
        fields["lat"], fields["lng"] = coords
    elif any(key in item for key in COORDINATE_KEYS) or not (box_id or device_id):
        return None

    if box_id:
        fields["id"] = box_id
    if device_id:
        fields["device_id"] = device_id

    name = _text(item.get("name"))
    if name:
        fields["name"] = name
    if "note" in item:
        fields["note"] = "" if item["note"] is None else str(item["note"])

    percent = to_finite(item.get("batteryPercent"))
    if percent is not None:
        fields["battery_percent"] = clamp_int(percent, *BATTERY_RANGE)
    else:
        battery = normalize_battery(first_finite(item, BATTERY))
        if battery is not None:
            fields["battery_percent"] = battery

    powerbank = to_finite(_first_present(item, ("powerbankMah",), ("powerbank_mAh",)))
    if powerbank is not None:
        fields["powerbank_mah"] = clamp_int(powerbank, *POWERBANK_RANGE)

    load = to_finite(_first_present(item, ("loadW",), ("load_w",)))
    if load is not None:
        fields["load_w"] = clamp_number(load, *LOAD_RANGE)

    wifi = to_finite(_first_present(item, ("wifiCount",), ("wifi_count",)))
    if wifi is not None:
        fields["wifi_count"] = clamp_int(wifi, *WIFI_COUNT_RANGE)

    status = _text(item.get("status"))
    if status:
        fields["status"] = status

    created_at = resolve_timestamp(item, "createdAt", "firstSeen")
    if created_at is not None:
        fields["created_at"] = created_at

    last_seen = resolve_timestamp(item, "lastSeen", "ts", *TIMESTAMP_KEYS)
    if last_seen is not None:
        fields["last_seen"] = last_seen
    elif coords is not None:
        fields["last_seen"] = now_ms()

    return BoxUpdate(**fields)


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


def iter_items(payload: Any, wrapper: str) -> Iterator[Mapping[str, Any]]:
    """Yield the objects of a payload: an array, ``{wrapper: [...]}`` or a single object.

    Array elements that are themselves ``{wrapper: [...]}`` are flattened.
    """
    if isinstance(payload, list):
        for element in payload:
            if isinstance(element, Mapping) and isinstance(element.get(wrapper), list):
                yield from iter_items(element[wrapper], wrapper)
            elif isinstance(element, Mapping):
                yield element
    elif isinstance(payload, Mapping):
        if isinstance(payload.get(wrapper), list):
            yield from iter_items(payload[wrapper], wrapper)
        else:
            yield payload


def normalize_boxes(payload: Any) -> list[BoxUpdate]:
    """Normalize a box API payload, dropping invalid items."""
    updates = [u for u in map(normalize_box, iter_items(payload, "boxes")) if u is not None]
    logger.debug(f"Normalized {len(updates)} box update(s)")
    return updates


def normalize_positions(payload: Any) -> list[BoxUpdate]:
    """Normalize a telemetry payload, dropping reports without a position."""
    updates = [u for u in map(normalize_position, iter_items(payload, "positions")) if u is not None]
    logger.debug(f"Normalized {len(updates)} telemetry position(s)")
    return updates


def new_box_id() -> str:
    """Identifier for a box inserted without one."""
    return str(uuid4())


def box_defaults(now: int | None = None) -> dict[str, Any]:
    """Field values for a newly inserted box, keyed by attribute name."""
    stamp = now if now is not None else now_ms()
    return {
        "name": DEFAULT_BOX_NAME,
        "note": "",
        "battery_percent": 0,
        "powerbank_mah": 0,
        "load_w": DEFAULT_LOAD_W,
        "last_seen": stamp,
        "created_at": stamp,
    }
