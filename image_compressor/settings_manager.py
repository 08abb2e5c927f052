from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .format_utils import default_concurrency
from .logger import get_logger

_logger = get_logger("settings")

DEFAULT_SETTINGS_PATH = str(Path.home() / ".image_compressor" / "settings.json")


class SettingsManager:
    def __init__(self, settings_path: str = DEFAULT_SETTINGS_PATH):
        self.settings_path = settings_path
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "target_size_kb": 500,
        "concurrency": None,  # resolved from the CPU count
        "last_export_dir": None,
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except (OSError, ValueError) as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.settings_path) or ".", exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except OSError as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    @property
    def target_size_kb(self) -> int:
        try:
            value = int(self.get("target_size_kb"))
        except (TypeError, ValueError):
            _logger.warning("saved target_size_kb invalid: %r", self.get("target_size_kb"))
            return int(self.DEFAULTS["target_size_kb"])
        return max(1, value)

    @property
    def concurrency(self) -> int:
        raw = self.get("concurrency")
        if raw is None:
            return default_concurrency()
        try:
            return max(1, int(raw))
        except (TypeError, ValueError):
            _logger.warning("saved concurrency invalid: %r", raw)
            return default_concurrency()

    @property
    def last_export_dir(self) -> str | None:
        val = self.get("last_export_dir")
        return val if isinstance(val, str) and os.path.isdir(val) else None
