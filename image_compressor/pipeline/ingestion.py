"""Asset ingestion: dedup, placeholder creation and asynchronous hydration."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable

from image_compressor.logger import get_logger

from .metrics import metrics
from .records import HYDRATION_FAILED_MESSAGE, AssetRecord, AssetStatus, HydrationResult
from .service_iface import ProcessingService
from .store import AssetStore

_logger = get_logger("ingest")


def _new_asset_id() -> str:
    return uuid.uuid4().hex


class Ingestor:
    """Turns locators into tracked records.

    `ingest` publishes HYDRATING placeholders synchronously and starts one
    hydration task per new record on the running event loop; hydrations are
    independent and may finish in any order.
    """

    def __init__(
        self,
        store: AssetStore,
        service: ProcessingService,
        *,
        id_factory: Callable[[], str] = _new_asset_id,
    ) -> None:
        self._store = store
        self._service = service
        self._id_factory = id_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_hydrations(self) -> int:
        return len(self._tasks)

    def ingest(self, locators: Iterable[str]) -> list[AssetRecord]:
        """Track every locator not already present; return the new placeholders.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        created: list[AssetRecord] = []
        skipped = 0
        for locator in dict.fromkeys(str(p) for p in locators):
            record = self._store.create(self._id_factory(), locator)
            if record is None:
                skipped += 1
                continue
            created.append(record)

        for record in created:
            task = loop.create_task(self._hydrate(record.asset_id, record.source_locator))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        metrics.inc("ingest.created", len(created))
        if skipped:
            metrics.inc("ingest.duplicates", skipped)
        _logger.info("ingest: %s new, %s already tracked", len(created), skipped)
        return created

    async def ingest_pasted(self, items: Iterable[tuple[bytes, str]]) -> list[AssetRecord]:
        """Persist pasted image data through the service, then ingest the locators.

        An item that cannot be persisted is logged and left out.
        """
        locators: list[str] = []
        for data, filename in items:
            try:
                locator = await self._service.persist_pasted_asset(data, filename or "pasted-image.png")
            except Exception as e:
                _logger.warning("paste: failed to persist %s: %s", filename, e)
                metrics.inc("ingest.paste_failures")
                continue
            locators.append(locator)
        if not locators:
            return []
        return self.ingest(locators)

    async def wait_hydrated(self) -> None:
        """Wait until every hydration started so far has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _hydrate(self, asset_id: str, locator: str) -> None:
        try:
            with metrics.timed("ingest.hydrate_duration"):
                result: HydrationResult = await self._service.hydrate(locator)
        except Exception as e:
            _logger.warning("hydrate failed: id=%s locator=%s: %s", asset_id, locator, e)
            metrics.inc("ingest.hydrate_failures")
            self._store.update(
                asset_id,
                lambda r: r.failed(HYDRATION_FAILED_MESSAGE) if r.status is AssetStatus.HYDRATING else None,
            )
            return

        updated = self._store.update(
            asset_id,
            lambda r: r.hydrated(result.size_bytes, result.preview) if r.status is AssetStatus.HYDRATING else None,
        )
        if updated is None:
            _logger.debug("hydrate result dropped: id=%s (removed)", asset_id)
        else:
            _logger.debug("hydrated: id=%s size=%s", asset_id, result.size_bytes)
