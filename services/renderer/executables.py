from __future__ import annotations

import logging
import os
import re
import subprocess
import sys
from typing import Callable, Dict, List, Optional


logger = logging.getLogger("mermaid_gateway.executables")

# Well-known install locations, checked in order.
CANDIDATE_PATHS: Dict[str, List[str]] = {
    "darwin": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    ],
    "linux": [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/snap/bin/chromium",
        "/usr/bin/google-chrome-unstable",
    ],
    "win32": [
        "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
        "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
        "C:\\Users\\%USERNAME%\\AppData\\Local\\Google\\Chrome\\Application\\chrome.exe",
    ],
}

# Binary names for the PATH lookup phase.
BINARY_NAMES: Dict[str, List[str]] = {
    "darwin": ["google-chrome", "chromium", "google-chrome-stable"],
    "linux": ["google-chrome", "chromium", "google-chrome-stable"],
    "win32": ["chrome", "google-chrome"],
}

_PLACEHOLDER = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)%")


def normalize_platform(platform_id: Optional[str] = None) -> str:
    p = (platform_id or sys.platform).lower()
    if p.startswith("linux"):
        return "linux"
    if p.startswith("win") or p == "cygwin":
        return "win32"
    return p


def expand_placeholders(path: str, environ: Optional[Dict[str, str]] = None) -> str:
    """Substitute Windows-style `%NAME%` tokens from the environment (unknown -> empty)."""
    env = os.environ if environ is None else environ
    return _PLACEHOLDER.sub(lambda m: env.get(m.group(1), ""), path)


def _exists(path: str) -> bool:
    return os.path.isfile(path)


def _present(exists: Callable[[str], bool], path: str) -> bool:
    try:
        return bool(exists(path))
    except OSError:
        # Permission problems count as "not there".
        return False


def _locate_on_path(name: str, platform_id: str) -> Optional[str]:
    cmd = "where" if platform_id == "win32" else "which"
    try:
        proc = subprocess.run(
            [cmd, name],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if proc.returncode != 0:
        return None
    for line in proc.stdout.splitlines():
        line = line.strip()
        if line:
            return line
    return None


def resolve_executable(
    platform_id: Optional[str] = None,
    *,
    environ: Optional[Dict[str, str]] = None,
    exists: Callable[[str], bool] = _exists,
    locate: Callable[[str, str], Optional[str]] = _locate_on_path,
) -> Optional[str]:
    """Best-effort path to a Chrome/Chromium binary, or None when nothing is found.

    Phase 1 checks the platform's well-known install locations; phase 2 asks
    `which`/`where` for each known binary name and keeps the first answer that
    exists on disk.
    """
    plat = normalize_platform(platform_id)

    for candidate in CANDIDATE_PATHS.get(plat, []):
        path = expand_placeholders(candidate, environ)
        if _present(exists, path):
            logger.info("found browser at well-known location %s", path, extra={"executable": path})
            return path

    for name in BINARY_NAMES.get(plat, []):
        found = locate(name, plat)
        if found and _present(exists, found):
            logger.info("found browser on PATH: %s", found, extra={"executable": found})
            return found

    logger.info("no system browser found for platform %s", plat)
    return None
