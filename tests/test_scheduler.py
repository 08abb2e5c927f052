from __future__ import annotations

import asyncio
import gc

import pytest

from image_compressor.pipeline import (
    AssetRecord,
    AssetStatus,
    AssetStore,
    BatchAlreadyRunningError,
    Ingestor,
    JobScheduler,
    ServiceUnavailableError,
)
from image_compressor.pipeline.metrics import metrics
from image_compressor.pipeline.scheduler import BATCH_ABORTED_MESSAGE
from tests.helpers.fake_service import FakeProcessingService


async def _ready(store: AssetStore, service: FakeProcessingService, locators: list[str]) -> list[str]:
    ingestor = Ingestor(store, service)
    created = ingestor.ingest(locators)
    await ingestor.wait_hydrated()
    return [r.asset_id for r in created]


def _processing_count(store: AssetStore) -> int:
    return len(store.with_status(AssetStatus.PROCESSING))


@pytest.mark.parametrize("limit", [1, 2, 3])
def test_processing_count_never_exceeds_limit(limit: int) -> None:
    async def scenario() -> None:
        locators = [f"/img/{i}.jpg" for i in range(7)]
        service = FakeProcessingService(compress_delays={loc: 0.01 * (i % 3 + 1) for i, loc in enumerate(locators)})
        store = AssetStore()
        await _ready(store, service, locators)
        observed: list[int] = []
        store.recordChanged.connect(lambda _r: observed.append(_processing_count(store)))

        summary = await JobScheduler(store, service).run_batch(limit)

        assert max(observed) == limit
        assert service.max_active_compress == limit
        assert metrics.peak("scheduler.in_flight") == limit
        assert summary.admitted == summary.succeeded == 7
        assert all(r.status is AssetStatus.SUCCEEDED for r in store.records())

    asyncio.run(scenario())


def test_jobs_are_admitted_in_ingestion_order() -> None:
    async def scenario() -> None:
        service = FakeProcessingService()
        store = AssetStore()
        await _ready(store, service, ["/A.jpg", "/B.jpg", "/C.jpg"])

        await JobScheduler(store, service).run_batch(1)

        assert service.compress_started == ["/A.jpg", "/B.jpg", "/C.jpg"]

    asyncio.run(scenario())


def test_only_records_ready_at_call_time_are_processed() -> None:
    async def scenario() -> None:
        service = FakeProcessingService(hydrate_delays={"/late.jpg": 0.05})
        store = AssetStore()
        ingestor = Ingestor(store, service)
        ingestor.ingest(["/early.jpg", "/late.jpg"])
        await asyncio.sleep(0.01)

        await JobScheduler(store, service).run_batch(2)
        await ingestor.wait_hydrated()

        by_locator = {r.source_locator: r for r in store.records()}
        assert by_locator["/early.jpg"].status is AssetStatus.SUCCEEDED
        assert by_locator["/late.jpg"].status is AssetStatus.READY
        assert service.compress_started == ["/early.jpg"]

    asyncio.run(scenario())


def test_progress_is_monotonic_and_ends_at_100() -> None:
    async def scenario() -> None:
        service = FakeProcessingService(progress_steps=(5, 30, 20, 60, 100))
        store = AssetStore()
        (asset_id,) = await _ready(store, service, ["/a.jpg"])
        seen: list[int] = []

        def on_change(r: AssetRecord) -> None:
            if r.asset_id == asset_id and r.status is AssetStatus.PROCESSING:
                seen.append(r.progress_percent)

        store.recordChanged.connect(on_change)
        await JobScheduler(store, service).run_batch(1)

        assert seen == sorted(seen)
        assert 5 in seen  # first tick is published before the job ever suspends
        assert 20 not in seen
        assert store.get(asset_id).progress_percent == 100

    asyncio.run(scenario())


def test_failed_job_does_not_disturb_others() -> None:
    async def scenario() -> None:
        service = FakeProcessingService(
            compress_delays={"/A.jpg": 0.05, "/B.jpg": 0.01, "/C.jpg": 0.03},
            fail_compress={"/B.jpg": "Failed to decode image: truncated file"},
        )
        store = AssetStore()
        a, b, c = await _ready(store, service, ["/A.jpg", "/B.jpg", "/C.jpg"])

        summary = await JobScheduler(store, service).run_batch(2)

        assert store.get(a).status is AssetStatus.SUCCEEDED
        assert store.get(c).status is AssetStatus.SUCCEEDED
        failed = store.get(b)
        assert failed.status is AssetStatus.FAILED
        assert failed.error_message == "Failed to decode image: truncated file"
        assert summary.succeeded == 2 and summary.failed == 1

    asyncio.run(scenario())


def test_unexpected_exception_is_contained_per_record() -> None:
    async def scenario() -> None:
        service = FakeProcessingService(compress_raises={"/x.jpg": RuntimeError("worker crashed")})
        store = AssetStore()
        x, y = await _ready(store, service, ["/x.jpg", "/y.jpg"])

        await JobScheduler(store, service).run_batch(2)

        assert store.get(x).status is AssetStatus.FAILED
        assert store.get(x).error_message == "worker crashed"
        assert store.get(y).status is AssetStatus.SUCCEEDED

    asyncio.run(scenario())


def test_subscription_is_attached_before_dispatch_and_always_released() -> None:
    async def scenario() -> None:
        service = FakeProcessingService(fail_compress={"/bad.jpg": "nope"})
        store = AssetStore()
        ids = await _ready(store, service, ["/ok.jpg", "/bad.jpg"])

        await JobScheduler(store, service).run_batch(2)

        assert all(service.subscribers_at_dispatch[i] == 1 for i in ids)
        assert service.progress_hub.subscriber_count() == 0

    asyncio.run(scenario())


def test_overlapping_batch_is_rejected() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        service = FakeProcessingService(compress_gates={"/a.jpg": gate})
        store = AssetStore()
        await _ready(store, service, ["/a.jpg"])
        scheduler = JobScheduler(store, service)

        first = asyncio.create_task(scheduler.run_batch(1))
        await asyncio.sleep(0.01)
        assert scheduler.running
        with pytest.raises(BatchAlreadyRunningError):
            await scheduler.run_batch(1)

        gate.set()
        summary = await first
        assert summary.succeeded == 1
        assert not scheduler.running

    asyncio.run(scenario())


def test_invalid_limit_is_rejected() -> None:
    async def scenario() -> None:
        service = FakeProcessingService()
        with pytest.raises(ValueError):
            await JobScheduler(AssetStore(), service).run_batch(0)

    asyncio.run(scenario())


def test_empty_batch_returns_immediately() -> None:
    async def scenario() -> None:
        summary = await JobScheduler(AssetStore(), FakeProcessingService()).run_batch(3)
        assert summary.admitted == 0

    asyncio.run(scenario())


def test_record_removed_while_in_flight_discards_late_updates() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        service = FakeProcessingService(compress_gates={"/a.jpg": gate})
        store = AssetStore()
        (asset_id,) = await _ready(store, service, ["/a.jpg"])
        changes: list[AssetRecord] = []

        batch = asyncio.create_task(JobScheduler(store, service).run_batch(1))
        await asyncio.sleep(0.01)
        assert store.get(asset_id).status is AssetStatus.PROCESSING

        store.remove(asset_id)
        store.recordChanged.connect(changes.append)
        service.progress_hub.publish(asset_id, 99)
        gate.set()
        summary = await batch

        assert asset_id not in store
        assert changes == []
        assert summary.admitted == 1 and summary.dropped == 1
        assert summary.succeeded == 0 and summary.settled == 0
        assert metrics.snapshot()["counters"].get("scheduler.jobs_succeeded", 0) == 0
        assert service.progress_hub.subscriber_count() == 0

    asyncio.run(scenario())


def test_record_removed_before_admission_is_skipped() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        service = FakeProcessingService(compress_gates={"/a.jpg": gate})
        store = AssetStore()
        _a, b = await _ready(store, service, ["/a.jpg", "/b.jpg"])

        batch = asyncio.create_task(JobScheduler(store, service).run_batch(1))
        await asyncio.sleep(0.01)
        store.remove(b)
        gate.set()
        summary = await batch

        assert service.compress_started == ["/a.jpg"]
        assert summary.skipped == 1

    asyncio.run(scenario())


def test_stale_progress_after_completion_is_ignored() -> None:
    async def scenario() -> None:
        service = FakeProcessingService()
        store = AssetStore()
        (asset_id,) = await _ready(store, service, ["/a.jpg"])
        scheduler = JobScheduler(store, service)
        await scheduler.run_batch(1)
        done = store.get(asset_id)

        # a late tick from a lingering subscriber must not touch the settled record
        scheduler._relay._apply(asset_id, 40)

        assert store.get(asset_id) is done
        assert done.status is AssetStatus.SUCCEEDED and done.progress_percent == 100

    asyncio.run(scenario())


def test_service_unavailable_aborts_batch() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        service = FakeProcessingService(
            compress_delays={"/down.jpg": 0.01},
            compress_gates={"/slow.jpg": gate},
            compress_raises={"/down.jpg": ServiceUnavailableError("backend gone")},
        )
        store = AssetStore()
        slow, down, queued = await _ready(store, service, ["/slow.jpg", "/down.jpg", "/queued.jpg"])

        with pytest.raises(ServiceUnavailableError):
            await JobScheduler(store, service).run_batch(2)

        assert store.get(down).status is AssetStatus.FAILED
        assert store.get(slow).status is AssetStatus.FAILED
        assert store.get(slow).error_message == BATCH_ABORTED_MESSAGE
        assert store.get(queued).status is AssetStatus.READY
        assert service.progress_hub.subscriber_count() == 0

    asyncio.run(scenario())


def test_simultaneous_fatal_failures_are_all_collected() -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        down = ServiceUnavailableError("backend gone")
        service = FakeProcessingService(
            compress_gates={"/a.jpg": gate, "/b.jpg": gate},
            compress_raises={"/a.jpg": down, "/b.jpg": down},
        )
        store = AssetStore()
        a, b = await _ready(store, service, ["/a.jpg", "/b.jpg"])
        messages: list[str] = []
        asyncio.get_running_loop().set_exception_handler(lambda _loop, ctx: messages.append(ctx["message"]))

        batch = asyncio.create_task(JobScheduler(store, service).run_batch(2))
        await asyncio.sleep(0.01)
        gate.set()
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await batch
        del exc_info, batch
        gc.collect()

        assert messages == []
        assert store.get(a).status is AssetStatus.FAILED
        assert store.get(b).status is AssetStatus.FAILED
        assert metrics.snapshot()["counters"].get("scheduler.jobs_succeeded", 0) == 0

    asyncio.run(scenario())
