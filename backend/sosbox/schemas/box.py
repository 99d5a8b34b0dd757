"""Schemas for box records and box API responses."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_BOX_NAME = "SOS BOX"
DEFAULT_LOAD_W = 5.0


class _CamelModel(BaseModel):
    """Accept snake_case attributes and camelCase JSON keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Box(_CamelModel):
    """Canonical box record as stored and returned by the API."""

    id: str
    device_id: str | None = None
    name: str = DEFAULT_BOX_NAME
    lat: float
    lng: float
    note: str = ""
    battery_percent: int = Field(default=0, ge=0, le=150)
    powerbank_mah: int = Field(default=0, ge=0, le=1_000_000)
    load_w: float = Field(default=DEFAULT_LOAD_W, ge=0.1, le=1000)
    last_seen: int = 0
    created_at: int = 0
    wifi_count: int | None = Field(default=None, ge=0, le=100_000)
    status: str | None = None

    def to_json(self) -> dict:
        """Serialize with camelCase keys, leaving out optional fields that were never set."""
        return self.model_dump(by_alias=True, exclude_none=True)


class BoxUpdate(_CamelModel):
    """Partial box produced by the normalizer.

    Only the fields present in the incoming payload are marked as set, so
    ``model_dump(exclude_unset=True)`` yields exactly the fields to merge.
    """

    id: str | None = None
    device_id: str | None = None
    name: str | None = None
    lat: float | None = None
    lng: float | None = None
    note: str | None = None
    battery_percent: int | None = None
    powerbank_mah: int | None = None
    load_w: float | None = None
    last_seen: int | None = None
    created_at: int | None = None
    wifi_count: int | None = None
    status: str | None = None

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def changes(self) -> dict:
        """Set fields keyed by attribute name."""
        return self.model_dump(exclude_unset=True)


class UpsertResult(BaseModel):
    """Outcome of a batch upsert."""

    upserted: int
    total: int


class BoxStatusItem(BaseModel):
    """Derived display status of a single box."""

    id: str
    name: str
    status: str
    battery_percent: int = Field(serialization_alias="batteryPercent")
    full_hours: float = Field(serialization_alias="fullHours")
    remaining_hours: float = Field(serialization_alias="remainingHours")


class StatusCounts(BaseModel):
    online: int = 0
    offline: int = 0
    low: int = 0


class BoxSummary(BaseModel):
    """Status counts for the map legend plus per-box runtime estimates."""

    counts: StatusCounts
    boxes: list[BoxStatusItem]
