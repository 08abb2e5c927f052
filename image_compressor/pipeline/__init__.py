"""Batch asset pipeline for the image compression tool.

- Asset store (store) holding copy-on-write records
- Ingestion with asynchronous hydration (ingestion)
- Bounded-concurrency job scheduling (scheduler) and progress relay (relay)
- Bulk and single export (exporter)
- Processing service contract (service_iface) and a pyvips backend (local_service)

Usage:
    from image_compressor.pipeline import AssetStore, Ingestor, JobScheduler

    store = AssetStore()
    ingestor = Ingestor(store, service)
    ingestor.ingest(paths)
    await ingestor.wait_hydrated()
    await JobScheduler(store, service).run_batch(concurrency_limit=2)
"""

from .errors import (
    BatchAlreadyRunningError,
    ExportError,
    HydrationError,
    InvalidTransitionError,
    PipelineError,
    ProcessingError,
    ServiceUnavailableError,
)
from .exporter import DEFAULT_ARCHIVE_NAME, ExportAggregator, default_export_name, unique_names
from .ingestion import Ingestor
from .records import AssetRecord, AssetStatus, BatchSummary, CompressResult, ExportItem, HydrationResult
from .relay import ProgressRelay
from .scheduler import DEFAULT_TARGET_SIZE_KB, JobScheduler
from .service_iface import ProcessingService, ProgressHub, ProgressSubscription
from .store import AssetStore

__all__ = [
    "DEFAULT_ARCHIVE_NAME",
    "DEFAULT_TARGET_SIZE_KB",
    "AssetRecord",
    "AssetStatus",
    "AssetStore",
    "BatchAlreadyRunningError",
    "BatchSummary",
    "CompressResult",
    "ExportAggregator",
    "ExportError",
    "ExportItem",
    "HydrationError",
    "HydrationResult",
    "Ingestor",
    "InvalidTransitionError",
    "JobScheduler",
    "PipelineError",
    "ProcessingError",
    "ProcessingService",
    "ProgressHub",
    "ProgressRelay",
    "ProgressSubscription",
    "ServiceUnavailableError",
    "default_export_name",
    "unique_names",
]
