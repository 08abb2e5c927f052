"""Pytest configuration.

The pipeline's store, progress hub and session are QObjects. Signals with
direct connections work without an application object, but Qt warns when
QObjects are created before one exists, so a single QCoreApplication is
created for the whole session and shut down at the end.
"""

from __future__ import annotations

from typing import Any

import pytest

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    global _APP

    app = QCoreApplication.instance()
    # Keep a strong ref so it isn't GC'd mid-session.
    _APP = app if app is not None else QCoreApplication([])


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    app = QCoreApplication.instance()
    if app is None:
        return
    app.quit()
    app.processEvents()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    monkeypatch.delenv("IMAGE_COMPRESSOR_LOG_LEVEL", raising=False)
    monkeypatch.delenv("IMAGE_COMPRESSOR_LOG_CATS", raising=False)
    from image_compressor.pipeline.metrics import metrics

    metrics.reset()
    yield
