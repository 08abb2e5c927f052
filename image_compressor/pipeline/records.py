"""Value types flowing through the asset pipeline.

Records are frozen: every change produces a new instance via
``dataclasses.replace`` so a record held by one task is never mutated under it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from image_compressor.format_utils import reduction_percent


class AssetStatus(str, Enum):
    """Asset lifecycle.

    HYDRATING -> READY -> PROCESSING -> SUCCEEDED
    HYDRATING -> FAILED
    PROCESSING -> FAILED
    """

    HYDRATING = "hydrating"
    READY = "ready"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AssetStatus.SUCCEEDED, AssetStatus.FAILED)


ALLOWED_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.HYDRATING: frozenset({AssetStatus.READY, AssetStatus.FAILED}),
    AssetStatus.READY: frozenset({AssetStatus.PROCESSING}),
    AssetStatus.PROCESSING: frozenset({AssetStatus.SUCCEEDED, AssetStatus.FAILED}),
    AssetStatus.SUCCEEDED: frozenset(),
    AssetStatus.FAILED: frozenset(),
}

HYDRATION_FAILED_MESSAGE = "Failed to load image"


@dataclass(frozen=True)
class AssetRecord:
    asset_id: str
    source_locator: str
    display_name: str
    created_seq: int
    status: AssetStatus = AssetStatus.HYDRATING
    original_size_bytes: int | None = None
    preview: bytes | None = None
    result: bytes | None = None
    result_size_bytes: int | None = None
    progress_percent: int = 0
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def reduction_percent(self) -> float | None:
        return reduction_percent(self.original_size_bytes, self.result_size_bytes)

    def hydrated(self, size_bytes: int, preview: bytes | None) -> AssetRecord:
        return replace(self, status=AssetStatus.READY, original_size_bytes=int(size_bytes), preview=preview)

    def processing(self) -> AssetRecord:
        return replace(self, status=AssetStatus.PROCESSING, progress_percent=0, error_message=None)

    def with_progress(self, percent: int) -> AssetRecord:
        return replace(self, progress_percent=int(max(0, min(100, int(percent)))))

    def succeeded(self, result: CompressResult) -> AssetRecord:
        return replace(
            self,
            status=AssetStatus.SUCCEEDED,
            original_size_bytes=result.original_size_bytes,
            result=result.data,
            result_size_bytes=result.compressed_size_bytes,
            progress_percent=100,
        )

    def failed(self, message: str) -> AssetRecord:
        return replace(self, status=AssetStatus.FAILED, error_message=message, progress_percent=0)


@dataclass(frozen=True)
class HydrationResult:
    size_bytes: int
    preview: bytes | None


@dataclass(frozen=True)
class CompressResult:
    original_size_bytes: int
    compressed_size_bytes: int
    data: bytes


@dataclass(frozen=True)
class ExportItem:
    name: str
    data: bytes


@dataclass(frozen=True)
class BatchSummary:
    admitted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    # admitted, but the record was removed before its job settled
    dropped: int = 0

    @property
    def settled(self) -> int:
        return self.succeeded + self.failed
