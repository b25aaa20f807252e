from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from services.renderer.errors import BrowserUnavailable
from services.renderer.executables import resolve_executable


# Tuned for containers: no sandbox, no GPU, no reliance on /dev/shm.
LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]
FALLBACK_ARGS: List[str] = ["--no-sandbox"]

REMEDIATION = (
    "Browser initialization failed. Install Chrome/Chromium, set CHROME_PATH to a "
    "working browser binary, or run: playwright install chromium"
)


class SessionState(str, Enum):
    uninitialized = "uninitialized"
    launching = "launching"
    ready = "ready"
    closed = "closed"
    failed = "failed"


class Launcher(Protocol):
    async def launch(self, *, executable_path: Optional[str], args: List[str], timeout_ms: int) -> Any: ...

    async def stop(self) -> None: ...


class PlaywrightLauncher:
    """Starts headless Chromium through Playwright; one driver per launcher."""

    def __init__(self) -> None:
        self._playwright: Any = None

    async def launch(self, *, executable_path: Optional[str], args: List[str], timeout_ms: int) -> Any:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=True,
            executable_path=executable_path,
            args=args,
            timeout=timeout_ms,
        )

    async def stop(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        finally:
            self._playwright = None


class BrowserSession:
    """One shared headless browser process, launched lazily and reused by every request.

    Concurrent callers that find the session uninitialized all await the same
    launch task, so the process is started at most once per transition.
    """

    def __init__(
        self,
        *,
        executable_path: Optional[str] = None,
        resolver: Callable[[], Optional[str]] = resolve_executable,
        launcher: Optional[Launcher] = None,
        launch_timeout_ms: int = 30000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.log = logger or logging.getLogger("mermaid_gateway.browser")
        self._configured_path = executable_path
        self._resolver = resolver
        self._launcher: Launcher = launcher or PlaywrightLauncher()
        self._launch_timeout_ms = launch_timeout_ms

        self._state = SessionState.uninitialized
        self._browser: Any = None
        self._launch_task: Optional[asyncio.Task] = None
        self.executable: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, new: SessionState) -> None:
        old = self._state
        self._state = new
        self.log.info("browser session %s -> %s", old.value, new.value, extra={"state": new.value})

    def _pick_executable(self) -> Optional[str]:
        configured = self._configured_path
        if configured:
            if os.path.isfile(configured):
                return configured
            self.log.warning("CHROME_PATH %s does not exist; looking for a system browser", configured)
        return self._resolver()

    async def ensure_ready(self) -> Any:
        """Return the live browser, launching it first if needed."""
        if self._state is SessionState.ready:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            self.log.warning("browser disconnected; relaunching")
            self._browser = None
            self._transition(SessionState.uninitialized)

        if self._state is SessionState.closed:
            raise BrowserUnavailable("Browser session is closed")

        if self._launch_task is None:
            self._launch_task = asyncio.ensure_future(self._launch())

        # Shielded: a cancelled waiter must not abort the launch for the others.
        return await asyncio.shield(self._launch_task)

    async def _launch(self) -> Any:
        self._transition(SessionState.launching)
        try:
            # The resolver may shell out to which/where.
            executable = await asyncio.to_thread(self._pick_executable)
            self.log.info(
                "launching browser with %s",
                executable or "bundled Chromium",
                extra={"executable": executable or "bundled"},
            )
            try:
                browser = await self._launcher.launch(
                    executable_path=executable,
                    args=list(LAUNCH_ARGS),
                    timeout_ms=self._launch_timeout_ms,
                )
            except (PlaywrightError, OSError) as exc:
                if executable is None:
                    self.log.error("bundled browser failed to launch: %s", exc)
                    self._transition(SessionState.failed)
                    raise BrowserUnavailable(REMEDIATION, details=str(exc)) from exc

                self.log.warning("browser at %s failed to launch (%s); retrying with bundled Chromium", executable, exc)
                try:
                    browser = await self._launcher.launch(
                        executable_path=None,
                        args=list(FALLBACK_ARGS),
                        timeout_ms=self._launch_timeout_ms,
                    )
                except (PlaywrightError, OSError) as fallback_exc:
                    self.log.error("bundled browser failed to launch: %s", fallback_exc)
                    self._transition(SessionState.failed)
                    raise BrowserUnavailable(REMEDIATION, details=str(fallback_exc)) from fallback_exc
                executable = None

            self._browser = browser
            self.executable = executable
            self._transition(SessionState.ready)
            self.log.info("browser ready (%s)", executable or "bundled Chromium", extra={"executable": executable or "bundled"})
            return browser
        finally:
            self._launch_task = None

    async def new_page(self, *, width: int, height: int, scale: float = 1.0) -> Any:
        """Open an isolated page whose viewport is sized before any content is injected."""
        browser = await self.ensure_ready()
        try:
            return await browser.new_page(
                viewport={"width": width, "height": height},
                device_scale_factor=scale,
            )
        except PlaywrightError as exc:
            raise BrowserUnavailable(f"Could not open a browser page: {exc}") from exc

    async def close(self) -> None:
        if self._state is SessionState.closed:
            return

        task = self._launch_task
        if task is not None:
            with contextlib.suppress(BrowserUnavailable):
                await asyncio.shield(task)

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                self.log.error("error closing browser: %s", exc)
            finally:
                self._browser = None

        try:
            await self._launcher.stop()
        except PlaywrightError as exc:
            self.log.error("error stopping playwright: %s", exc)

        self._transition(SessionState.closed)
