from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


log = logging.getLogger("mermaid_gateway.config")

# Keys of `render_defaults` that map onto request options.
RENDER_DEFAULT_KEYS = frozenset(
    {"theme", "width", "height", "backgroundColor", "background_color", "quality", "scale", "timeoutMs", "timeout_ms", "timeout"}
)


@dataclass(frozen=True)
class HotReloadConfig:
    enabled: bool
    poll_seconds: int


class ConfigStore:
    """YAML deployment settings, re-read when the file changes.

    Holds `render_defaults` so operators can change the gateway's default theme,
    size or timeouts without a restart. A file that stops parsing is logged and
    the last good copy stays in effect.
    """

    def __init__(self, config_path: str | Path | None = None):
        self._path = Path(config_path or os.environ.get("GATEWAY_CONFIG_PATH", "config/config.yaml"))
        self._mtime: float | None = None
        self._data: dict[str, Any] | None = None
        self._checked_at = 0.0

    @property
    def path(self) -> Path:
        return self._path

    def _mtime_now(self) -> float | None:
        try:
            return self._path.stat().st_mtime
        except OSError:
            return None

    def _load(self) -> dict[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            return {}
        except (OSError, yaml.YAMLError) as exc:
            log.warning("could not load %s, keeping previous settings: %s", self._path, exc)
            return self._data if self._data is not None else {}

        if not isinstance(data, dict):
            log.warning("%s must contain a mapping; ignoring it", self._path)
            return {}
        return data

    def get(self) -> dict[str, Any]:
        if self._data is None:
            self._mtime = self._mtime_now()
            self._data = self._load()
            self._checked_at = time.time()
            return self._data

        hot = self.hot_reload()
        now = time.time()
        if hot.enabled and now - self._checked_at >= hot.poll_seconds:
            self._checked_at = now
            mtime = self._mtime_now()
            if mtime != self._mtime:
                self._mtime = mtime
                self._data = self._load()
                log.info("reloaded %s", self._path)
        return self._data

    def hot_reload(self) -> HotReloadConfig:
        hr = (self._data or {}).get("hot_reload") or {}
        return HotReloadConfig(enabled=bool(hr.get("enabled", True)), poll_seconds=int(hr.get("poll_seconds", 2)))

    def render_defaults(self) -> dict[str, Any]:
        defaults = self.get().get("render_defaults") or {}
        if not isinstance(defaults, dict):
            return {}
        unknown = set(defaults) - RENDER_DEFAULT_KEYS
        if unknown:
            log.warning("ignoring unknown render_defaults keys: %s", ", ".join(sorted(unknown)))
        return {k: v for k, v in defaults.items() if k in RENDER_DEFAULT_KEYS}
