from __future__ import annotations

import os

from PySide6.QtCore import Property, QObject, Signal

from image_compressor.app.state.tasks_state import TasksState
from image_compressor.format_utils import default_concurrency
from image_compressor.logger import get_logger
from image_compressor.pipeline import (
    DEFAULT_ARCHIVE_NAME,
    DEFAULT_TARGET_SIZE_KB,
    AssetRecord,
    AssetStatus,
    AssetStore,
    BatchSummary,
    ExportAggregator,
    ExportError,
    Ingestor,
    JobScheduler,
    PipelineError,
    ProcessingService,
    ProgressRelay,
)
from image_compressor.settings_manager import SettingsManager

_logger = get_logger("session")

_TASK = "compress"


class CompressorSession(QObject):
    """Backend of one image-compression tool view.

    Owns the store and the pipeline components for as long as the view is
    open. Views bind to `store` and `tasks`; progress and outcomes are also
    announced as dicts on `taskEvent`.
    """

    taskEvent = Signal(object, name="taskEvent")

    def __init__(
        self,
        service: ProcessingService,
        settings: SettingsManager | None = None,
        parent: QObject | None = None,
        *,
        target_size_kb: int | None = None,
        concurrency: int | None = None,
    ) -> None:
        super().__init__(parent)
        self._service = service
        self._settings_mgr = settings
        self._target_override = target_size_kb
        self._concurrency_override = concurrency
        self._store = AssetStore(self)
        self._tasks = TasksState(self)
        self._ingestor = Ingestor(self._store, service)
        self._scheduler = JobScheduler(self._store, service, ProgressRelay(self._store, service))
        self._exporter = ExportAggregator(self._store, service)
        self._batch_ids: list[str] = []

        self._store.recordChanged.connect(self._on_record_changed)

    # ---- exposed state ----
    def _get_store(self) -> QObject:
        return self._store

    store = Property(QObject, _get_store, constant=True)  # type: ignore[arg-type]

    def _get_tasks(self) -> QObject:
        return self._tasks

    tasks = Property(QObject, _get_tasks, constant=True)  # type: ignore[arg-type]

    @property
    def ingestor(self) -> Ingestor:
        return self._ingestor

    @property
    def target_size_kb(self) -> int:
        if self._target_override is not None:
            return max(1, int(self._target_override))
        return self._settings_mgr.target_size_kb if self._settings_mgr else DEFAULT_TARGET_SIZE_KB

    @property
    def concurrency(self) -> int:
        if self._concurrency_override is not None:
            return max(1, int(self._concurrency_override))
        return self._settings_mgr.concurrency if self._settings_mgr else default_concurrency()

    # ---- commands ----
    def add_files(self, paths: list[str]) -> list[AssetRecord]:
        created = self._ingestor.ingest(paths)
        if created:
            self.taskEvent.emit({"type": "task", "name": _TASK, "state": "added", "count": len(created)})
        return created

    async def paste_images(self, items: list[tuple[bytes, str]]) -> list[AssetRecord]:
        created = await self._ingestor.ingest_pasted(items)
        if created:
            self.taskEvent.emit({"type": "task", "name": _TASK, "state": "added", "count": len(created)})
        return created

    async def start_compression(self) -> BatchSummary | None:
        """Run one batch over the READY records. Ignored while a batch is running."""
        if self._tasks._get_compress_running():
            _logger.debug("start_compression ignored: batch already running")
            return None
        ready = self._store.with_status(AssetStatus.READY)
        if not ready:
            return None

        self._batch_ids = [r.asset_id for r in ready]
        self._tasks._set_compress_percent(0)
        self._tasks._set_compress_running(True)
        self.taskEvent.emit({"type": "task", "name": _TASK, "state": "started", "total": len(ready)})
        try:
            summary = await self._scheduler.run_batch(self.concurrency, self.target_size_kb)
        except PipelineError as e:
            _logger.error("compression batch failed: %s", e)
            self.taskEvent.emit({"type": "task", "name": _TASK, "state": "error", "message": str(e)})
            raise
        finally:
            self._tasks._set_compress_running(False)
            self._batch_ids = []

        self._tasks._set_compress_percent(100)
        self.taskEvent.emit(
            {
                "type": "task",
                "name": _TASK,
                "state": "finished",
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "dropped": summary.dropped,
                "total": summary.admitted,
            }
        )
        return summary

    async def export_all(self, destination: str | None = None) -> int:
        target = destination or os.path.join(self._default_export_dir(), DEFAULT_ARCHIVE_NAME)
        try:
            count = await self._exporter.export_all(target)
        except ExportError as e:
            self.taskEvent.emit({"type": "task", "name": "export", "state": "error", "message": str(e)})
            raise
        if count:
            self._remember_export_dir(target)
            self.taskEvent.emit({"type": "task", "name": "export", "state": "finished", "count": count, "path": target})
        return count

    async def export_one(self, asset_id: str, destination: str) -> None:
        try:
            await self._exporter.export_one(asset_id, destination)
        except ExportError as e:
            self.taskEvent.emit({"type": "task", "name": "export", "state": "error", "message": str(e)})
            raise
        self._remember_export_dir(destination)
        self.taskEvent.emit({"type": "task", "name": "export", "state": "finished", "count": 1, "path": destination})

    def remove(self, asset_id: str) -> bool:
        return self._store.remove(asset_id)

    def clear(self) -> int:
        return self._store.clear()

    # ---- internals ----
    def _default_export_dir(self) -> str:
        if self._settings_mgr and self._settings_mgr.last_export_dir:
            return self._settings_mgr.last_export_dir
        return os.getcwd()

    def _remember_export_dir(self, destination: str) -> None:
        if self._settings_mgr is None:
            return
        folder = os.path.dirname(os.path.abspath(destination))
        if folder != self._settings_mgr.get("last_export_dir"):
            self._settings_mgr.set("last_export_dir", folder)

    def _on_record_changed(self, record: AssetRecord) -> None:
        if not self._batch_ids or record.asset_id not in self._batch_ids:
            return
        total = 0
        for asset_id in self._batch_ids:
            r = self._store.get(asset_id)
            if r is None or r.is_terminal:
                total += 100
            elif r.status is AssetStatus.PROCESSING:
                total += r.progress_percent
        percent = total // len(self._batch_ids)
        self._tasks._set_compress_percent(percent)
        self.taskEvent.emit(
            {
                "type": "task",
                "name": _TASK,
                "state": "progress",
                "id": record.asset_id,
                "status": record.status.value,
                "progress": record.progress_percent,
                "percent": percent,
            }
        )
