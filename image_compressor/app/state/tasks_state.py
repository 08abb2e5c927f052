from __future__ import annotations

from PySide6.QtCore import Property, QObject, Signal


class TasksState(QObject):
    """Bindable state for the compression batch.

    Progress details travel through session.taskEvent(dict); this object only
    carries what the view needs to enable/disable its controls.
    """

    compressRunningChanged = Signal(bool)
    compressPercentChanged = Signal(int)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._compress_running = False
        self._compress_percent = 0

    def _get_compress_running(self) -> bool:
        return bool(self._compress_running)

    compressRunning = Property(bool, _get_compress_running, notify=compressRunningChanged)  # type: ignore[arg-type]

    def _get_compress_percent(self) -> int:
        return int(self._compress_percent)

    compressPercent = Property(int, _get_compress_percent, notify=compressPercentChanged)  # type: ignore[arg-type]

    def _set_compress_running(self, running: bool) -> None:
        v = bool(running)
        if v == self._compress_running:
            return
        self._compress_running = v
        self.compressRunningChanged.emit(v)

    def _set_compress_percent(self, percent: int) -> None:
        p = int(max(0, min(100, int(percent))))
        if p == self._compress_percent:
            return
        self._compress_percent = p
        self.compressPercentChanged.emit(p)
