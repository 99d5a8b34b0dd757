"""Box store backed by a single pretty-printed JSON array."""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from sosbox.normalizer import WIFI_COUNT_RANGE, box_defaults, clamp_int, new_box_id, now_ms
from sosbox.schemas.box import Box, BoxUpdate, UpsertResult
from sosbox.stores.base import BoxStore, StorageError

logger = logging.getLogger(__name__)


class JsonFileStore(BoxStore):
    """Whole-collection read-modify-write on a JSON file.

    Insertion order of the array is the display order. A missing or
    unreadable file reads as an empty collection.
    """

    backend = "file"

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)

    async def _setup(self) -> None:
        await asyncio.to_thread(self._ensure_file)
        logger.info(f"Using JSON box store at {self.path}")

    def _ensure_file(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.is_file():
                self.path.write_text("[]", encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot create data file {self.path}: {e}") from e

    def _read_records(self) -> list[dict]:
        try:
            raw = self.path.read_text(encoding="utf-8")
            parsed = json.loads(raw or "[]")
        except (OSError, ValueError) as e:
            logger.warning(f"Treating unreadable data file {self.path} as empty: {e}")
            return []
        if not isinstance(parsed, list):
            logger.warning(f"Data file {self.path} does not hold a JSON array, treating as empty")
            return []
        return [record for record in parsed if isinstance(record, dict)]

    def _write_records(self, records: list[dict]) -> None:
        try:
            self.path.write_text(
                json.dumps(records, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            raise StorageError(f"Cannot write data file {self.path}: {e}") from e

    async def _load(self) -> dict[str, dict]:
        records = await asyncio.to_thread(self._read_records)
        by_id: dict[str, dict] = {}
        for record in records:
            if record.get("id") is None:
                continue
            by_id[str(record["id"])] = record
        return by_id

    def _rewrite(self, records: list[dict]) -> None:
        """Write keyed records back, keeping stored entries that have no id."""
        unkeyed = [record for record in self._read_records() if record.get("id") is None]
        if unkeyed:
            logger.warning(f"Keeping {len(unkeyed)} entries without an id in {self.path} unchanged")
        self._write_records(records + unkeyed)

    async def _save(self, by_id: dict[str, dict]) -> None:
        await asyncio.to_thread(self._rewrite, list(by_id.values()))

    async def get_all(self) -> list[Box]:
        boxes = []
        for box_id, record in (await self._load()).items():
            try:
                boxes.append(Box.model_validate({**record, "id": box_id}))
            except ValidationError as e:
                logger.warning(f"Skipping malformed stored box {box_id!r}: {e.error_count()} error(s)")
        return boxes

    @staticmethod
    def _match(by_id: dict[str, dict], update: BoxUpdate) -> str | None:
        if update.id is not None and update.id in by_id:
            return update.id
        if update.device_id:
            for box_id, record in by_id.items():
                if str(record.get("deviceId") or "") == update.device_id:
                    return box_id
            if update.device_id in by_id:
                return update.device_id
        return None

    @staticmethod
    def _previous(by_id: dict[str, dict], box_id: str | None) -> Box | None:
        if box_id is None:
            return None
        try:
            return Box.model_validate({**by_id[box_id], "id": box_id})
        except ValidationError:
            logger.warning(f"Stored box {box_id!r} is malformed, replacing it")
            return None

    async def upsert_many(self, updates: Sequence[BoxUpdate]) -> UpsertResult:
        by_id = await self._load()
        upserted = 0

        for update in updates:
            changes = update.changes
            existing_id = self._match(by_id, update)

            previous = self._previous(by_id, existing_id)
            if previous is None:
                if not update.has_position:
                    logger.debug(f"Skipping field-only update for unknown box {update.id or update.device_id!r}")
                    continue
                box_id = existing_id or update.id or update.device_id or new_box_id()
                merged = {**box_defaults(), **changes, "id": box_id}
            else:
                box_id = existing_id
                merged = {**previous.model_dump(exclude_none=True), **changes, "id": box_id}
                merged["created_at"] = previous.created_at or changes.get("created_at") or now_ms()

            try:
                box = Box.model_validate(merged)
            except ValidationError as e:
                logger.warning(f"Dropping update for box {box_id!r}: {e.error_count()} invalid field(s)")
                continue
            by_id[box_id] = box.to_json()
            upserted += 1

        await self._save(by_id)
        logger.debug(f"Upserted {upserted} box(es), {len(by_id)} stored")
        return UpsertResult(upserted=upserted, total=len(by_id))

    async def delete_one(self, box_id: str) -> int:
        by_id = await self._load()
        if by_id.pop(str(box_id), None) is None:
            return 0
        await self._save(by_id)
        return 1

    async def delete_all(self) -> None:
        await asyncio.to_thread(self._write_records, [])

    async def get_wifi_count(self, box_id: str) -> int:
        record = (await self._load()).get(str(box_id))
        if record is None:
            return 0
        return clamp_int(record.get("wifiCount"), *WIFI_COUNT_RANGE)

    async def set_wifi_count(self, box_id: str, value: Any) -> int:
        count = clamp_int(value, *WIFI_COUNT_RANGE)
        by_id = await self._load()
        record = by_id.get(str(box_id))
        if record is not None:
            record["wifiCount"] = count
            await self._save(by_id)
        return count

    def __repr__(self) -> str:
        return f"JsonFileStore(path={str(self.path)!r})"
