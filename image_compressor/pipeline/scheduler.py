"""Bounded-concurrency batch compression over READY records."""

from __future__ import annotations

import asyncio
from collections import deque

from image_compressor.logger import get_logger

from .errors import BatchAlreadyRunningError, ServiceUnavailableError
from .metrics import metrics
from .records import AssetRecord, AssetStatus, BatchSummary
from .relay import ProgressRelay
from .service_iface import ProcessingService, ProgressSubscription
from .store import AssetStore

_logger = get_logger("scheduler")

DEFAULT_TARGET_SIZE_KB = 500
BATCH_ABORTED_MESSAGE = "Batch aborted"


class JobScheduler:
    """Admits READY records as compression jobs, at most `concurrency_limit` at once.

    The pending queue is captured when `run_batch` starts, in ingestion order.
    A settled job frees its slot and the next pending record is admitted right
    away. Individual job failures are recorded on the record and never abort
    the batch; only ServiceUnavailableError does.
    """

    def __init__(
        self,
        store: AssetStore,
        service: ProcessingService,
        relay: ProgressRelay | None = None,
    ) -> None:
        self._store = store
        self._service = service
        self._relay = relay or ProgressRelay(store, service)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_batch(
        self,
        concurrency_limit: int,
        target_size_kb: int = DEFAULT_TARGET_SIZE_KB,
    ) -> BatchSummary:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        if self._running:
            raise BatchAlreadyRunningError("a batch is already running")
        self._running = True
        try:
            return await self._run(int(concurrency_limit), int(target_size_kb))
        finally:
            self._running = False

    async def _run(self, limit: int, target_size_kb: int) -> BatchSummary:
        pending = deque(r.asset_id for r in self._store.with_status(AssetStatus.READY))
        in_flight: set[asyncio.Task] = set()
        counts = {"admitted": 0, "succeeded": 0, "failed": 0, "skipped": 0, "dropped": 0}
        _logger.info("batch start: %s ready, limit=%s, target=%sKB", len(pending), limit, target_size_kb)

        try:
            while pending or in_flight:
                while pending and len(in_flight) < limit:
                    task = self._admit(pending.popleft(), target_size_kb)
                    if task is None:
                        counts["skipped"] += 1
                        continue
                    counts["admitted"] += 1
                    in_flight.add(task)
                    metrics.gauge("scheduler.in_flight", len(in_flight))

                if not in_flight:
                    continue
                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                metrics.gauge("scheduler.in_flight", len(in_flight))
                fatal: ServiceUnavailableError | None = None
                for task in done:
                    try:
                        counts[task.result()] += 1
                    except ServiceUnavailableError as e:
                        counts["failed"] += 1
                        fatal = fatal or e
                if fatal is not None:
                    raise fatal
        except BaseException:
            await self._abort(in_flight)
            raise

        summary = BatchSummary(**counts)
        _logger.info(
            "batch done: admitted=%s succeeded=%s failed=%s skipped=%s dropped=%s",
            summary.admitted,
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.dropped,
        )
        return summary

    def _admit(self, asset_id: str, target_size_kb: int) -> asyncio.Task | None:
        record = self._store.update(
            asset_id,
            lambda r: r.processing() if r.status is AssetStatus.READY else None,
        )
        if record is None:
            _logger.debug("admit skipped: id=%s (removed or no longer ready)", asset_id)
            return None
        # subscribe before dispatch so early progress is not lost
        subscription = self._relay.attach(asset_id)
        metrics.inc("scheduler.jobs_admitted")
        _logger.debug("admitted: id=%s locator=%s", asset_id, record.source_locator)
        return asyncio.get_running_loop().create_task(
            self._run_job(record, target_size_kb, subscription),
            name=f"compress:{asset_id}",
        )

    async def _run_job(
        self, record: AssetRecord, target_size_kb: int, subscription: ProgressSubscription
    ) -> str:
        """Run one job; returns the BatchSummary field it counts towards."""
        asset_id = record.asset_id
        try:
            with metrics.timed("scheduler.job_duration"):
                result = await self._service.compress(record.source_locator, target_size_kb, asset_id)
        except ServiceUnavailableError as e:
            self._mark_failed(asset_id, str(e))
            raise
        except asyncio.CancelledError:
            self._mark_failed(asset_id, BATCH_ABORTED_MESSAGE)
            raise
        except Exception as e:
            _logger.warning("job failed: id=%s: %s", asset_id, e)
            if not self._mark_failed(asset_id, str(e)):
                metrics.inc("scheduler.jobs_dropped")
                return "dropped"
            metrics.inc("scheduler.jobs_failed")
            return "failed"
        finally:
            self._relay.detach(subscription)

        updated = self._store.update(
            asset_id,
            lambda r: r.succeeded(result) if r.status is AssetStatus.PROCESSING else None,
        )
        if updated is None:
            _logger.debug("job result dropped: id=%s (removed)", asset_id)
            metrics.inc("scheduler.jobs_dropped")
            return "dropped"
        metrics.inc("scheduler.jobs_succeeded")
        return "succeeded"

    def _mark_failed(self, asset_id: str, message: str) -> bool:
        updated = self._store.update(
            asset_id,
            lambda r: r.failed(message) if r.status is AssetStatus.PROCESSING else None,
        )
        return updated is not None

    async def _abort(self, in_flight: set[asyncio.Task]) -> None:
        if not in_flight:
            return
        _logger.error("batch aborted: cancelling %s in-flight jobs", len(in_flight))
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        metrics.gauge("scheduler.in_flight", 0)
