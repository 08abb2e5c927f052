"""Processing service backed by local files and pyvips.

Blocking work (file I/O, decoding, encoding, zip packaging) runs on a
ThreadPoolExecutor. Progress produced on worker threads is posted back to the
owning event loop with `call_soon_threadsafe`, so subscribers always run on the
loop thread and see ticks in the order they were produced.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import zipfile
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from image_compressor.logger import get_logger

from . import compressor
from .errors import ExportError, ProcessingError, ServiceUnavailableError
from .metrics import metrics
from .records import CompressResult, ExportItem, HydrationResult
from .service_iface import ProcessingService, ProgressHub

_logger = get_logger("local_service")

PASTE_PREFIX = "image_compressor_"
ZIP_COMPRESS_LEVEL = 6


def _write_bytes(data: bytes, destination: str) -> None:
    try:
        Path(destination).write_bytes(data)
    except OSError as e:
        raise ExportError(f"Failed to write file: {e}") from e


def _write_zip(items: Sequence[ExportItem], destination: str) -> None:
    try:
        with zipfile.ZipFile(
            destination, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=ZIP_COMPRESS_LEVEL
        ) as zf:
            for item in items:
                zf.writestr(item.name, item.data)
    except OSError as e:
        raise ExportError(f"Failed to create zip file: {e}") from e


class LocalProcessingService(ProcessingService):
    def __init__(
        self,
        max_workers: int | None = None,
        *,
        temp_dir: str | None = None,
        hub: ProgressHub | None = None,
    ) -> None:
        super().__init__(hub)
        workers = max_workers or max(2, min(8, os.cpu_count() or 2))
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="compress")
        self._temp_dir = temp_dir or tempfile.gettempdir()
        self._closed = False
        _logger.debug("LocalProcessingService init: workers=%s temp_dir=%s", workers, self._temp_dir)

    async def _run(self, fn, *args):
        if self._closed:
            raise ServiceUnavailableError("processing service is shut down")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn, *args)
        except RuntimeError as e:
            # executor was shut down underneath us
            if self._closed:
                raise ServiceUnavailableError(str(e)) from e
            raise

    async def hydrate(self, locator: str) -> HydrationResult:
        return await self._run(compressor.hydrate_file, locator)

    async def compress(self, locator: str, target_size_kb: int, job_id: str) -> CompressResult:
        loop = asyncio.get_running_loop()
        hub = self.progress_hub

        def report(percent: int) -> None:
            loop.call_soon_threadsafe(hub.publish, job_id, percent)

        try:
            with metrics.timed("local_service.compress_duration"):
                return await self._run(compressor.compress_file, locator, target_size_kb, report)
        except (ProcessingError, ServiceUnavailableError):
            raise
        except Exception as e:
            _logger.exception("compress crashed: %s", locator)
            raise ProcessingError(str(e)) from e

    async def persist_pasted_asset(self, data: bytes, filename: str) -> str:
        name = Path(filename).name or "pasted-image.png"
        path = os.path.join(self._temp_dir, f"{PASTE_PREFIX}{name}")
        await self._run(Path(path).write_bytes, data)
        _logger.debug("pasted asset stored: %s (%s bytes)", path, len(data))
        return path

    async def export_single(self, data: bytes, destination: str) -> None:
        await self._run(_write_bytes, data, destination)

    async def export_batch(self, items: Sequence[ExportItem], destination: str) -> None:
        await self._run(_write_zip, list(items), destination)

    def shutdown(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
