from __future__ import annotations

import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional


class ArtifactStore:
    """Rendered files served under a fixed URL prefix, evicted by age.

    Eviction is opportunistic (see `sweep`); nothing runs on a timer.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        url_prefix: str = "/tmp",
        max_age_seconds: int = 3600,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.directory = Path(directory)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.max_age_seconds = max_age_seconds
        self.log = logger or logging.getLogger("mermaid_gateway.artifacts")

    def ensure_directory(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def _new_name(self, suffix: str) -> str:
        return f"mermaid-{int(time.time() * 1000)}-{secrets.token_hex(6)}{suffix}"

    def save(self, data: bytes, *, suffix: str = ".png") -> str:
        """Write `data` under a fresh name and return its reference path (e.g. `/tmp/x.png`)."""
        self.ensure_directory()
        name = self._new_name(suffix)
        (self.directory / name).write_bytes(data)
        self.log.info("stored artifact %s (%d bytes)", name, len(data))
        return f"{self.url_prefix}/{name}"

    def sweep(self, *, now: Optional[float] = None) -> int:
        """Delete files older than `max_age_seconds`; returns how many were removed."""
        if not self.directory.is_dir():
            return 0

        cutoff = (now if now is not None else time.time()) - self.max_age_seconds
        removed = 0
        try:
            entries = list(os.scandir(self.directory))
        except OSError as exc:
            self.log.warning("could not list artifact directory %s: %s", self.directory, exc)
            return 0

        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                if entry.stat().st_mtime < cutoff:
                    os.unlink(entry.path)
                    removed += 1
            except FileNotFoundError:
                # Removed concurrently.
                continue
            except OSError as exc:
                self.log.warning("could not evict artifact %s: %s", entry.path, exc)
                continue

        if removed:
            self.log.info("evicted %d stale artifacts", removed)
        return removed
