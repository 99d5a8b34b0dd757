"""Tests for payload normalization of box and telemetry payloads."""

import math

import pytest

from sosbox.normalizer import (
    clamp_int,
    clamp_number,
    iter_items,
    ms_to_iso,
    normalize_battery,
    normalize_box,
    normalize_boxes,
    normalize_position,
    normalize_positions,
    now_ms,
    parse_timestamp_ms,
    to_finite,
)

JAN_1_2024_MS = 1704067200000


class TestCoercion:
    """Number coercion and clamping helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (12, 12.0),
            (" 12.5 ", 12.5),
            ("-3", -3.0),
            ("", None),
            ("abc", None),
            (None, None),
            (True, None),
            (float("nan"), None),
            ("inf", None),
            ({"level": 1}, None),
        ],
    )
    def test_to_finite(self, value, expected):
        assert to_finite(value) == expected

    def test_clamp_int_rounds_half_up(self):
        assert clamp_int(2.5, 0, 10) == 3
        assert clamp_int(2.4, 0, 10) == 2

    def test_clamp_int_non_finite_uses_lower_bound(self):
        assert clamp_int(None, 0, 150) == 0
        assert clamp_int("x", 5, 10) == 5

    def test_clamp_number_default(self):
        assert clamp_number("x", 0.1, 1000, default=5.0) == 5.0
        assert clamp_number(0, 0.1, 1000) == 0.1
        assert clamp_number(5000, 0.1, 1000) == 1000


class TestBattery:
    """Battery readings are fractions at or below 1, percentages above."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (0.73, 73),
            (87, 87),
            (-5, 0),
            (500, 150),
            (1, 100),
            ("0.5", 50),
            (0, 0),
            (120, 120),
        ],
    )
    def test_normalize_battery(self, raw, expected):
        assert normalize_battery(raw) == expected

    def test_missing_battery_is_none(self):
        assert normalize_battery(None) is None
        assert normalize_battery("n/a") is None


class TestTimestamps:
    """Timestamp parsing to epoch milliseconds."""

    def test_epoch_ms_passthrough(self):
        assert parse_timestamp_ms(1700000000000) == 1700000000000

    def test_epoch_seconds_scaled(self):
        assert parse_timestamp_ms(1700000000) == 1700000000000

    def test_numeric_string(self):
        assert parse_timestamp_ms("1700000000000") == 1700000000000

    def test_iso_with_z(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00Z") == JAN_1_2024_MS

    def test_naive_iso_is_utc(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00") == JAN_1_2024_MS

    def test_garbage_is_none(self):
        assert parse_timestamp_ms("yesterday") is None
        assert parse_timestamp_ms(None) is None

    def test_epoch_microseconds_scaled(self):
        assert parse_timestamp_ms(1_700_000_000_000_000) == 1700000000000

    def test_epoch_nanoseconds_scaled(self):
        assert parse_timestamp_ms("1700000000000000000") == 1700000000000

    @pytest.mark.parametrize("value", [1e25, -1700000000000, "0001-01-01T00:00:00Z"])
    def test_out_of_range_is_none(self, value):
        assert parse_timestamp_ms(value) is None

    def test_latest_representable_time(self):
        assert parse_timestamp_ms(253_402_300_799_999) == 253_402_300_799_999

    def test_ms_to_iso(self):
        assert ms_to_iso(JAN_1_2024_MS) == "2024-01-01T00:00:00.000Z"

    def test_ms_to_iso_clamps_range(self):
        assert ms_to_iso(10**18) == "9999-12-31T23:59:59.999Z"
        assert ms_to_iso(-5) == "1970-01-01T00:00:00.000Z"


class TestNormalizePosition:
    """Telemetry reports in the shapes different tracker apps send."""

    def test_nested_location_query_string(self):
        """lat/lon/batt encoded as a query string in location._"""
        update = normalize_position({"location": {"_": "lat=13.5&lon=100.2&batt=45"}})
        assert update is not None
        assert update.lat == 13.5
        assert update.lng == 100.2
        assert update.battery_percent == 45

    def test_nested_location_direct_properties(self):
        update = normalize_position({"location": {"lat": "10", "lon": 20, "battery": {"level": 0.5}}})
        assert update.lat == 10.0
        assert update.lng == 20.0
        assert update.battery_percent == 50

    def test_query_string_falls_back_to_nested_properties(self):
        """Non-numeric query string values fall through to the nested object."""
        update = normalize_position(
            {"location": {"_": "lat=abc&lon=x", "latitude": 1.5, "longitude": 2.5, "battery": 0.9}}
        )
        assert update.lat == 1.5
        assert update.lng == 2.5
        assert update.battery_percent == 90

    def test_nested_battery_value_form(self):
        update = normalize_position({"location": {"lat": 1, "lon": 2, "battery": {"value": 80}}})
        assert update.battery_percent == 80

    def test_attribute_battery(self):
        update = normalize_position({"lat": 1, "lon": 2, "attributes": {"batteryLevel": 64}})
        assert update.battery_percent == 64

    def test_fraction_battery_top_level(self):
        update = normalize_position({"latitude": 1, "longitude": 2, "batteryLevel": 0.73})
        assert update.battery_percent == 73

    def test_missing_battery_is_not_set(self):
        update = normalize_position({"lat": 1, "lon": 2})
        assert "battery_percent" not in update.changes

    def test_device_identity_order(self):
        update = normalize_position({"device_id": "a", "deviceId": "b", "id": "c", "lat": 1, "lon": 2})
        assert update.device_id == "a"

    def test_nested_device_object(self):
        update = normalize_position({"device": {"id": "d1", "name": "Truck"}, "lat": 1, "lon": 2})
        assert update.device_id == "d1"
        assert update.name == "Truck"

    def test_numeric_id_is_stringified(self):
        update = normalize_position({"id": 5, "lat": 1, "lon": 2})
        assert update.device_id == "5"
        assert update.name == "5"

    def test_name_falls_back_to_default(self):
        update = normalize_position({"lat": 1, "lon": 2})
        assert update.device_id is None
        assert update.name == "SOS BOX"

    def test_fix_time_parsed(self):
        update = normalize_position({"lat": 1, "lon": 2, "fixTime": "2024-01-01T00:00:00Z"})
        assert update.last_seen == JAN_1_2024_MS

    def test_timestamp_candidates_in_order(self):
        update = normalize_position(
            {"lat": 1, "lon": 2, "timestamp": 1700000000, "time": "2024-01-01T00:00:00Z"}
        )
        assert update.last_seen == 1700000000000

    def test_microsecond_timestamp(self):
        update = normalize_position({"lat": 1, "lon": 2, "timestamp": 1_700_000_000_000_000})
        assert update.last_seen == 1700000000000

    def test_unusable_timestamp_defaults_to_now(self):
        before = now_ms()
        update = normalize_position({"lat": 1, "lon": 2, "timestamp": 1e25})
        assert before <= update.last_seen <= now_ms()

    def test_missing_timestamp_defaults_to_now(self):
        before = now_ms()
        update = normalize_position({"lat": 1, "lon": 2})
        assert before <= update.last_seen <= now_ms()

    def test_status_default_and_override(self):
        assert normalize_position({"lat": 1, "lon": 2}).status == "online"
        assert normalize_position({"lat": 1, "lon": 2, "status": "sos"}).status == "sos"

    def test_coordinates_clamped(self):
        update = normalize_position({"lat": 95, "lon": 200})
        assert update.lat == 90.0
        assert update.lng == 180.0

    @pytest.mark.parametrize(
        "item",
        [
            {"lat": "abc", "lon": 1},
            {"latitude": 1},
            {"location": {"_": "batt=45"}},
            {"lat": float("nan"), "lon": 1},
            "lat=1&lon=2",
            [1, 2],
            None,
        ],
    )
    def test_items_without_position_dropped(self, item):
        assert normalize_position(item) is None

    def test_coordinates_always_finite(self):
        update = normalize_position({"lat": "1e308", "lon": "-1e308"})
        assert math.isfinite(update.lat) and math.isfinite(update.lng)


class TestNormalizeBox:
    """Box API items: position updates and field-only updates."""

    def test_full_box(self):
        update = normalize_box({"id": "A", "lat": 1, "lng": 2, "name": "X", "batteryPercent": 90})
        changes = update.changes
        assert changes["id"] == "A"
        assert changes["lat"] == 1.0
        assert changes["lng"] == 2.0
        assert changes["name"] == "X"
        assert changes["battery_percent"] == 90
        assert "last_seen" in changes

    def test_battery_percent_is_not_a_fraction(self):
        update = normalize_box({"id": "A", "lat": 1, "lng": 2, "batteryPercent": 87.4})
        assert update.battery_percent == 87

    def test_battery_alias_uses_fraction_rule(self):
        update = normalize_box({"id": "A", "lat": 1, "lng": 2, "battery": 0.73})
        assert update.battery_percent == 73

    def test_field_only_update_keeps_only_given_fields(self):
        update = normalize_box({"id": "A", "batteryPercent": 50})
        assert update is not None
        assert update.changes == {"id": "A", "battery_percent": 50}
        assert update.has_position is False

    def test_field_only_update_by_device_id(self):
        update = normalize_box({"deviceId": "dev-1", "note": "moved to shelter"})
        assert update.changes == {"device_id": "dev-1", "note": "moved to shelter"}

    def test_field_only_update_needs_identity(self):
        assert normalize_box({"batteryPercent": 50}) is None

    def test_invalid_coordinates_drop_item_even_with_id(self):
        assert normalize_box({"id": "A", "lat": "abc", "lng": 2}) is None

    def test_single_coordinate_dropped(self):
        assert normalize_box({"id": "A", "lat": 1}) is None

    def test_aliases_and_clamps(self):
        update = normalize_box(
            {"latitude": 1, "lon": 2, "powerbank_mAh": 2_000_000, "load_w": "0", "wifi_count": -3}
        )
        assert update.lat == 1.0
        assert update.lng == 2.0
        assert update.powerbank_mah == 1_000_000
        assert update.load_w == 0.1
        assert update.wifi_count == 0
        assert update.id is None

    def test_load_upper_bound(self):
        assert normalize_box({"lat": 1, "lng": 2, "loadW": 5000}).load_w == 1000

    def test_created_at(self):
        update = normalize_box({"id": "A", "lat": 1, "lng": 2, "createdAt": 1700000000000})
        assert update.created_at == 1700000000000

    def test_explicit_last_seen_kept(self):
        update = normalize_box({"id": "A", "lat": 1, "lng": 2, "lastSeen": JAN_1_2024_MS})
        assert update.last_seen == JAN_1_2024_MS

    def test_nested_location_accepted(self):
        update = normalize_box({"id": "A", "location": {"_": "lat=13.5&lon=100.2&batt=45"}})
        assert update.lat == 13.5
        assert update.lng == 100.2
        assert update.battery_percent == 45


class TestBatches:
    """Unwrapping arrays and wrapper objects."""

    def test_one_invalid_item_of_three_dropped(self):
        updates = normalize_boxes(
            [
                {"id": "A", "lat": 1, "lng": 2},
                {"id": "B", "lat": "x", "lng": 2},
                {"id": "C", "lat": 3, "lng": 4},
            ]
        )
        assert [u.id for u in updates] == ["A", "C"]

    def test_boxes_wrapper(self):
        updates = normalize_boxes({"boxes": [{"lat": 1, "lng": 2}, {"lat": 3, "lng": 4}]})
        assert len(updates) == 2

    def test_single_object(self):
        assert len(normalize_boxes({"lat": 1, "lng": 2})) == 1

    @pytest.mark.parametrize("payload", [None, "text", 42, []])
    def test_nothing_to_normalize(self, payload):
        assert normalize_boxes(payload) == []

    def test_positions_wrapper(self):
        updates = normalize_positions({"positions": [{"id": 1, "lat": 1, "lon": 2}, {"id": 2, "lat": 3, "lon": 4}]})
        assert [u.device_id for u in updates] == ["1", "2"]

    def test_array_of_position_wrappers_flattened(self):
        payload = [
            {"positions": [{"id": "a", "lat": 1, "lon": 2}]},
            {"positions": [{"id": "b", "lat": 3, "lon": 4}, {"id": "c", "lat": "bad", "lon": 4}]},
        ]
        assert [u.device_id for u in normalize_positions(payload)] == ["a", "b"]

    def test_non_object_elements_skipped(self):
        assert list(iter_items([{"a": 1}, "x", 3, None], "boxes")) == [{"a": 1}]
