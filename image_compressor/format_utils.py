"""Small helpers shared by the pipeline, the session and the CLI."""

from __future__ import annotations

import os
import re

_SIZE_NAMES = ("B", "KB", "MB", "GB", "TB")


def format_size(size_bytes: int) -> str:
    if size_bytes < 0:
        raise ValueError("size_bytes must be non-negative")
    if size_bytes < 1024:
        return f"{size_bytes} B"
    value = float(size_bytes)
    i = 0
    while value >= 1024 and i < len(_SIZE_NAMES) - 1:
        value /= 1024
        i += 1
    return f"{value:.2f} {_SIZE_NAMES[i]}"


def display_name_from_locator(locator: str) -> str:
    """Last path segment of a locator, accepting both separator styles."""
    name = re.split(r"[\\/]", str(locator).rstrip("\\/"))[-1]
    return name or "unknown"


def default_concurrency(cpu_count: int | None = None) -> int:
    """Half the cores, clamped to [2, 4]."""
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 2)
    return max(2, min(4, cpus // 2))


def reduction_percent(original: int | None, compressed: int | None) -> float | None:
    if not original or compressed is None:
        return None
    return (1.0 - compressed / original) * 100.0
