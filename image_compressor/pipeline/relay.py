from __future__ import annotations

from image_compressor.logger import get_logger

from .records import AssetRecord, AssetStatus
from .service_iface import ProcessingService, ProgressSubscription
from .store import AssetStore

_logger = get_logger("relay")


class ProgressRelay:
    """Forwards a job's progress notifications into the store.

    Only `progress_percent` of a PROCESSING record is ever written. Ticks for
    records that were removed, already settled, or lower than the last seen
    value are dropped.
    """

    def __init__(self, store: AssetStore, service: ProcessingService) -> None:
        self._store = store
        self._service = service

    def attach(self, asset_id: str) -> ProgressSubscription:
        _logger.debug("attach: id=%s", asset_id)
        return self._service.subscribe_progress(asset_id, lambda pct: self._apply(asset_id, pct))

    def detach(self, subscription: ProgressSubscription | None) -> None:
        if subscription is None or subscription.closed:
            return
        subscription.close()
        _logger.debug("detach: id=%s", subscription.job_id)

    def _apply(self, asset_id: str, percent: int) -> None:
        def mutate(record: AssetRecord) -> AssetRecord | None:
            if record.status is not AssetStatus.PROCESSING:
                return None
            if percent < record.progress_percent:
                return None
            return record.with_progress(percent)

        self._store.update(asset_id, mutate)
