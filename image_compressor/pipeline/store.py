from __future__ import annotations

import itertools
import threading
from collections import OrderedDict
from collections.abc import Callable

from PySide6.QtCore import QObject, Signal

from image_compressor.format_utils import display_name_from_locator
from image_compressor.logger import get_logger

from .errors import InvalidTransitionError
from .records import ALLOWED_TRANSITIONS, AssetRecord, AssetStatus

_logger = get_logger("store")

Mutator = Callable[[AssetRecord], AssetRecord | None]


class AssetStore(QObject):
    """In-memory collection of tracked assets.

    Every write goes through `create`, `update`, `remove` or `clear`. Records
    are swapped whole under the lock; signals are emitted after the lock is
    released so observers may read the store from their slots.
    """

    recordAdded = Signal(object)  # AssetRecord
    recordChanged = Signal(object)  # AssetRecord
    recordRemoved = Signal(str)  # asset_id
    cleared = Signal()

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._records: OrderedDict[str, AssetRecord] = OrderedDict()
        self._by_locator: dict[str, str] = {}
        self._seq = itertools.count(1)
        self._lock = threading.RLock()

    # ---- reads ----
    def get(self, asset_id: str) -> AssetRecord | None:
        with self._lock:
            return self._records.get(asset_id)

    def records(self) -> list[AssetRecord]:
        """Snapshot of all records in ingestion order."""
        with self._lock:
            return list(self._records.values())

    def with_status(self, status: AssetStatus) -> list[AssetRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.status is status]

    def has_locator(self, locator: str) -> bool:
        with self._lock:
            return locator in self._by_locator

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._records

    # ---- writes ----
    def create(self, asset_id: str, locator: str) -> AssetRecord | None:
        """Add a HYDRATING placeholder. Returns None when `locator` is already tracked."""
        with self._lock:
            if locator in self._by_locator:
                return None
            if asset_id in self._records:
                raise ValueError(f"duplicate asset id: {asset_id}")
            record = AssetRecord(
                asset_id=asset_id,
                source_locator=locator,
                display_name=display_name_from_locator(locator),
                created_seq=next(self._seq),
            )
            self._records[asset_id] = record
            self._by_locator[locator] = asset_id
        _logger.debug("record added: id=%s locator=%s", asset_id, locator)
        self.recordAdded.emit(record)
        return record

    def update(self, asset_id: str, mutate: Mutator) -> AssetRecord | None:
        """Replace one record with `mutate(current)`.

        `mutate` returns the new record, or None to leave it untouched. Returns
        the stored record after the call, or None when `asset_id` is no longer
        tracked or nothing changed.
        """
        with self._lock:
            current = self._records.get(asset_id)
            if current is None:
                _logger.debug("update ignored: id=%s (removed)", asset_id)
                return None
            new = mutate(current)
            if new is None or new == current:
                return None
            if new.asset_id != current.asset_id or new.source_locator != current.source_locator:
                raise ValueError(f"{asset_id}: identity fields are immutable")
            if new.status is not current.status and new.status not in ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransitionError(asset_id, current.status.value, new.status.value)
            self._records[asset_id] = new
        self.recordChanged.emit(new)
        return new

    def remove(self, asset_id: str) -> bool:
        with self._lock:
            record = self._records.pop(asset_id, None)
            if record is None:
                return False
            self._by_locator.pop(record.source_locator, None)
        _logger.debug("record removed: id=%s status=%s", asset_id, record.status.value)
        self.recordRemoved.emit(asset_id)
        return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._by_locator.clear()
        if count:
            _logger.debug("store cleared: %s records", count)
        self.cleared.emit()
        return count
