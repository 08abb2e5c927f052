from __future__ import annotations

import contextlib
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable, Sequence

from PySide6.QtCore import QObject, Signal

from .records import CompressResult, ExportItem, HydrationResult

ProgressCallback = Callable[[int], None]


class ProgressSubscription:
    """Handle for one job-id filtered connection to a ProgressHub."""

    def __init__(self, hub: ProgressHub, job_id: str, callback: ProgressCallback) -> None:
        self.job_id = job_id
        self._hub = hub
        self._callback = callback
        self._closed = False
        hub.progress.connect(self._on_progress)

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_progress(self, job_id: str, percent: int) -> None:
        if self._closed or job_id != self.job_id:
            return
        self._callback(int(percent))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(RuntimeError, TypeError):
            self._hub.progress.disconnect(self._on_progress)
        self._hub._forget(self.job_id)


class ProgressHub(QObject):
    """Per-job progress topics multiplexed over one Qt signal.

    `publish` must be called on the thread that owns the pipeline's event loop;
    worker threads go through `loop.call_soon_threadsafe(hub.publish, ...)`.
    """

    progress = Signal(str, int)  # job_id, percent

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._active: Counter[str] = Counter()

    def subscribe(self, job_id: str, callback: ProgressCallback) -> ProgressSubscription:
        self._active[job_id] += 1
        return ProgressSubscription(self, job_id, callback)

    def publish(self, job_id: str, percent: int) -> None:
        self.progress.emit(job_id, int(percent))

    def subscriber_count(self, job_id: str | None = None) -> int:
        if job_id is None:
            return sum(self._active.values())
        return self._active.get(job_id, 0)

    def _forget(self, job_id: str) -> None:
        self._active[job_id] -= 1
        if self._active[job_id] <= 0:
            del self._active[job_id]


class ProcessingService(ABC):
    """Backend that reads, compresses and writes image bytes for the pipeline.

    Implementations raise HydrationError / ProcessingError / ExportError for
    per-asset failures and ServiceUnavailableError when they cannot be used at all.
    """

    def __init__(self, hub: ProgressHub | None = None) -> None:
        self.progress_hub = hub or ProgressHub()

    def subscribe_progress(self, job_id: str, callback: ProgressCallback) -> ProgressSubscription:
        return self.progress_hub.subscribe(job_id, callback)

    @abstractmethod
    async def hydrate(self, locator: str) -> HydrationResult:
        """Return size and preview bytes for `locator`."""
        raise NotImplementedError()

    @abstractmethod
    async def compress(self, locator: str, target_size_kb: int, job_id: str) -> CompressResult:
        """Compress `locator` towards `target_size_kb`, publishing progress under `job_id`."""
        raise NotImplementedError()

    @abstractmethod
    async def persist_pasted_asset(self, data: bytes, filename: str) -> str:
        """Store pasted bytes somewhere readable and return the new locator."""
        raise NotImplementedError()

    @abstractmethod
    async def export_single(self, data: bytes, destination: str) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def export_batch(self, items: Sequence[ExportItem], destination: str) -> None:
        raise NotImplementedError()
