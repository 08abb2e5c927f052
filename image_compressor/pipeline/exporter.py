from __future__ import annotations

import os

from image_compressor.logger import get_logger

from .errors import ExportError
from .metrics import metrics
from .records import AssetRecord, AssetStatus, ExportItem
from .service_iface import ProcessingService
from .store import AssetStore

_logger = get_logger("export")

EXPORT_NAME_PREFIX = "compressed_"
DEFAULT_ARCHIVE_NAME = "compressed_images.zip"


def default_export_name(record: AssetRecord) -> str:
    return f"{EXPORT_NAME_PREFIX}{record.display_name}"


def unique_names(names: list[str]) -> list[str]:
    """Suffix repeated archive entry names with ' (2)', ' (3)', ..."""
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        candidate = name
        n = 2
        while candidate in seen:
            stem, ext = os.path.splitext(name)
            candidate = f"{stem} ({n}){ext}"
            n += 1
        seen.add(candidate)
        out.append(candidate)
    return out


class ExportAggregator:
    """Writes SUCCEEDED results out through the processing service.

    Export never changes record status; service failures surface as ExportError.
    """

    def __init__(self, store: AssetStore, service: ProcessingService) -> None:
        self._store = store
        self._service = service

    def exportable(self) -> list[AssetRecord]:
        return [r for r in self._store.with_status(AssetStatus.SUCCEEDED) if r.result is not None]

    async def export_all(self, destination: str) -> int:
        """Write every succeeded result into one archive at `destination`.

        Returns the number of exported items; 0 means nothing was written and
        the service was not called.
        """
        records = self.exportable()
        if not records:
            _logger.debug("export_all: nothing to export")
            return 0

        names = unique_names([default_export_name(r) for r in records])
        items = [ExportItem(name=name, data=r.result or b"") for name, r in zip(names, records)]
        try:
            with metrics.timed("export.batch_duration"):
                await self._service.export_batch(items, destination)
        except ExportError:
            metrics.inc("export.failures")
            raise
        except Exception as e:
            metrics.inc("export.failures")
            raise ExportError(f"Failed to export {len(items)} images: {e}") from e
        _logger.info("exported %s images to %s", len(items), destination)
        return len(items)

    async def export_one(self, asset_id: str, destination: str) -> None:
        record = self._store.get(asset_id)
        if record is None:
            raise ExportError(f"unknown asset: {asset_id}")
        if record.status is not AssetStatus.SUCCEEDED or record.result is None:
            raise ExportError(f"{record.display_name} has no compressed result (status={record.status.value})")
        try:
            await self._service.export_single(record.result, destination)
        except ExportError:
            metrics.inc("export.failures")
            raise
        except Exception as e:
            metrics.inc("export.failures")
            raise ExportError(f"Failed to save {record.display_name}: {e}") from e
        _logger.info("exported %s to %s", record.display_name, destination)
