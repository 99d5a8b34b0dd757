"""Box store backed by a single SQL table."""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sosbox.database import Base, build_engine, build_session_maker
from sosbox.models.box import BOX_TABLE, BoxRow, additive_columns
from sosbox.normalizer import (
    BATTERY_RANGE,
    LAT_RANGE,
    LNG_RANGE,
    LOAD_RANGE,
    POWERBANK_RANGE,
    WIFI_COUNT_RANGE,
    box_defaults,
    clamp_int,
    clamp_number,
    ms_to_iso,
    now_ms,
)
from sosbox.schemas.box import DEFAULT_BOX_NAME, DEFAULT_LOAD_W, Box, BoxUpdate, UpsertResult
from sosbox.stores.base import BoxStore, StorageError

logger = logging.getLogger(__name__)

# Rows written before the power columns existed
LEGACY_POWERBANK_MAH = 10_000
MAX_ROW_ID = 2_000_000_000
DEVICE_ID_INDEX = "ix_sosbox_device_id"

# BoxUpdate attribute -> column, for fields stored verbatim
_DIRECT_COLUMNS = {
    "name": "name",
    "lat": "lat",
    "lng": "lon",
    "status": "status",
    "battery_percent": "batt",
    "wifi_count": "wifi_count",
    "device_id": "device_id",
    "note": "note",
    "powerbank_mah": "powerbank_mah",
    "load_w": "load_w",
}


def migrate_box_table(sync_conn) -> list[str]:
    """Create the box table, or add whichever columns an older table lacks.

    Purely additive: nothing is dropped or altered. Returns the names of the
    columns that were added.
    """
    inspector = inspect(sync_conn)
    if BOX_TABLE not in inspector.get_table_names():
        Base.metadata.create_all(sync_conn, tables=[BoxRow.__table__])
        return []

    existing = {column["name"] for column in inspector.get_columns(BOX_TABLE)}
    operations = Operations(MigrationContext.configure(sync_conn))
    added = []
    for column in additive_columns():
        if column.name not in existing:
            operations.add_column(BOX_TABLE, column)
            added.append(column.name)

    indexes = {index["name"] for index in inspector.get_indexes(BOX_TABLE)}
    if DEVICE_ID_INDEX not in indexes:
        operations.create_index(DEVICE_ID_INDEX, BOX_TABLE, ["device_id"])
    return added


def _row_id(value: str | None) -> int | None:
    """Primary key encoded in a box id, if it is a positive integer."""
    if value is None:
        return None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    number = int(text)
    return number if 0 < number <= MAX_ROW_ID else None


def _iso_to_ms(value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def row_to_box(row: BoxRow) -> Box:
    """Convert a row to a canonical box, clamping values written by older versions."""
    created_at = _iso_to_ms(row.created_at)
    last_seen = _iso_to_ms(row.last_seen) or created_at or now_ms()
    return Box(
        id=str(row.id),
        device_id=row.device_id or None,
        name=row.name or DEFAULT_BOX_NAME,
        lat=clamp_number(row.lat, *LAT_RANGE, default=0.0),
        lng=clamp_number(row.lon, *LNG_RANGE, default=0.0),
        note=row.note or "",
        battery_percent=clamp_int(row.batt, *BATTERY_RANGE),
        powerbank_mah=clamp_int(row.powerbank_mah, *POWERBANK_RANGE, default=LEGACY_POWERBANK_MAH),
        load_w=clamp_number(row.load_w, *LOAD_RANGE, default=DEFAULT_LOAD_W),
        last_seen=last_seen,
        created_at=created_at or last_seen,
        wifi_count=clamp_int(row.wifi_count, *WIFI_COUNT_RANGE),
        status=row.status or None,
    )


def apply_changes(row: BoxRow, changes: dict) -> None:
    """Copy set fields of an update onto a row; created_at is only written on insert."""
    for attr, column in _DIRECT_COLUMNS.items():
        if attr in changes and changes[attr] is not None:
            setattr(row, column, changes[attr])
    if changes.get("last_seen") is not None:
        row.last_seen = ms_to_iso(changes["last_seen"])
    if row.created_at is None:
        row.created_at = ms_to_iso(changes.get("created_at") or now_ms())


class SqlBoxStore(BoxStore):
    """Box store on an SQL table, newest row first.

    Boxes are addressed by integer primary key; a non-numeric id or an
    explicit deviceId is looked up in the device_id column instead.
    """

    backend = "sql"

    def __init__(self, database_url: str, echo: bool = False):
        super().__init__()
        self.database_url = database_url
        self.engine = build_engine(database_url, echo=echo)
        self.session_maker = build_session_maker(self.engine)

    async def _setup(self) -> None:
        try:
            async with self.engine.begin() as conn:
                added = await conn.run_sync(migrate_box_table)
        except SQLAlchemyError as e:
            logger.exception("Failed to prepare box table")
            raise StorageError(str(e)) from e
        if added:
            logger.info(f"Added columns to {BOX_TABLE}: {', '.join(added)}")
        logger.info(f"Using SQL box store ({self.engine.url.get_backend_name()})")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    @staticmethod
    async def _find_by_device(session: AsyncSession, device_id: str) -> BoxRow | None:
        result = await session.execute(
            select(BoxRow).where(BoxRow.device_id == device_id).order_by(BoxRow.id).limit(1)
        )
        return result.scalar()

    async def _find(self, session: AsyncSession, box_id: str) -> BoxRow | None:
        row_id = _row_id(box_id)
        if row_id is not None:
            return await session.get(BoxRow, row_id)
        return await self._find_by_device(session, str(box_id))

    async def _resolve(self, session: AsyncSession, update: BoxUpdate) -> BoxRow | None:
        row_id = _row_id(update.id)
        if row_id is not None:
            row = await session.get(BoxRow, row_id)
            if row is not None:
                return row
        device_id = update.device_id or (update.id if row_id is None else None)
        if device_id:
            return await self._find_by_device(session, device_id)
        return None

    async def get_all(self) -> list[Box]:
        async with self._session() as session:
            result = await session.execute(select(BoxRow).order_by(BoxRow.id.desc()))
            return [row_to_box(row) for row in result.scalars().all()]

    async def upsert_many(self, updates: Sequence[BoxUpdate]) -> UpsertResult:
        upserted = 0
        for update in updates:
            async with self._session() as session:
                row = await self._resolve(session, update)
                changes = update.changes
                if row is None:
                    if not update.has_position:
                        logger.debug(f"Skipping field-only update for unknown box {update.id or update.device_id!r}")
                        continue
                    if not changes.get("device_id") and update.id and _row_id(update.id) is None:
                        changes["device_id"] = update.id
                    row = BoxRow()
                    apply_changes(row, {**box_defaults(), "status": "online", **changes})
                    session.add(row)
                else:
                    apply_changes(row, changes)
                await session.commit()
                upserted += 1

        async with self._session() as session:
            total = await session.scalar(select(func.count()).select_from(BoxRow))
        logger.debug(f"Upserted {upserted} box(es), {total} stored")
        return UpsertResult(upserted=upserted, total=total or 0)

    async def delete_one(self, box_id: str) -> int:
        async with self._session() as session:
            row = await self._find(session, box_id)
            if row is None:
                return 0
            await session.delete(row)
            await session.commit()
            return 1

    async def delete_all(self) -> None:
        async with self._session() as session:
            await session.execute(delete(BoxRow))
            await session.commit()

    async def get_wifi_count(self, box_id: str) -> int:
        async with self._session() as session:
            row = await self._find(session, box_id)
            if row is None:
                return 0
            return clamp_int(row.wifi_count, *WIFI_COUNT_RANGE)

    async def set_wifi_count(self, box_id: str, value: Any) -> int:
        count = clamp_int(value, *WIFI_COUNT_RANGE)
        async with self._session() as session:
            row = await self._find(session, box_id)
            if row is not None:
                row.wifi_count = count
                await session.commit()
        return count

    def __repr__(self) -> str:
        return f"SqlBoxStore(url={self.engine.url.render_as_string(hide_password=True)!r})"
