"""Render pipeline: one isolated browser page per request, six output shapes.

Every browser-backed format goes through the same protocol:

1. open a page sized to the requested viewport (launching the browser on first use);
2. inject the self-contained capture document;
3. wait for the document, then for the Mermaid entry point, then for the render to settle;
4. locate and measure the rendered ``<svg>``;
5. capture the requested representation;
6. close the page, whatever happened.

``html`` skips the browser entirely and ``url`` is a ``png`` whose bytes are handed
to the artifact store.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from services.renderer.artifacts import ArtifactStore
from services.renderer.browser import BrowserSession
from services.renderer.document import (
    CONTAINER_ID,
    RENDER_ERROR_ATTR,
    RENDER_STATE_ATTR,
    ScriptSource,
    build_capture_document,
    build_viewer_document,
)
from services.renderer.errors import InternalError, InvalidInput, RenderFailed, RenderTimeout
from services.shared.models import MIME_TYPES, OutputFormat, RenderOptions


# A4 at 96 dpi; what pdf results report instead of the diagram's own size.
PDF_PAGE_WIDTH = 794
PDF_PAGE_HEIGHT = 1123
PDF_MARGIN = {"top": "20px", "right": "20px", "bottom": "20px", "left": "20px"}

SCRIPT_READY_JS = "() => typeof window.mermaid !== 'undefined' && typeof window.mermaid.run === 'function'"
DIAGRAM_SELECTOR = f"#{CONTAINER_ID} svg"
SETTLED_SELECTOR = f"body[{RENDER_STATE_ATTR}]"

Payload = Union[bytes, str]


@dataclass(frozen=True)
class RenderResult:
    payload: Payload
    width: int
    height: int
    render_time_ms: int
    mime_type: str
    format: OutputFormat


@dataclass(frozen=True)
class _Capture:
    payload: Payload
    width: int
    height: int


def parse_format(value: Union[OutputFormat, str]) -> OutputFormat:
    if isinstance(value, OutputFormat):
        return value
    try:
        return OutputFormat(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(f.value for f in OutputFormat)
        raise InvalidInput(f"Format must be one of: {allowed}") from None


def to_px(value: Union[float, str]) -> int:
    """Round a CSS length to whole pixels, halves up."""
    return int(math.floor(float(value) + 0.5))


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


class RenderPipeline:
    def __init__(
        self,
        session: BrowserSession,
        store: ArtifactStore,
        script: ScriptSource,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.store = store
        self.script = script
        self.log = logger or logging.getLogger("mermaid_gateway.pipeline")

        self._captures: Dict[OutputFormat, Callable[[Any, Any, Dict[str, float], RenderOptions], Awaitable[_Capture]]] = {
            OutputFormat.png: self._capture_png,
            OutputFormat.jpeg: self._capture_jpeg,
            OutputFormat.svg: self._capture_svg,
            OutputFormat.pdf: self._capture_pdf,
            OutputFormat.url: self._capture_reference,
            OutputFormat.base64: self._capture_data_url,
        }

    async def render(
        self,
        diagram_text: str,
        fmt: Union[OutputFormat, str],
        options: Optional[RenderOptions] = None,
        *,
        deadline_s: Optional[float] = None,
    ) -> RenderResult:
        """Render `diagram_text` as `fmt`.

        Raises InvalidInput, BrowserUnavailable, RenderTimeout, RenderFailed or
        InternalError. `deadline_s` bounds the whole call; when it elapses the
        pending waits are cancelled and the page is still closed.
        """
        started = time.perf_counter()
        out_format = parse_format(fmt)
        if not isinstance(diagram_text, str) or not diagram_text.strip():
            raise InvalidInput("Mermaid code is required and must be a non-empty string")
        opts = options or RenderOptions()

        try:
            if deadline_s is None:
                capture = await self._render(diagram_text, out_format, opts)
            else:
                try:
                    capture = await asyncio.wait_for(self._render(diagram_text, out_format, opts), deadline_s)
                except asyncio.TimeoutError:
                    raise RenderTimeout(f"Rendering exceeded the {deadline_s:g}s request deadline") from None
        except Exception as exc:
            self.log.warning(
                "render failed after %dms: %s",
                _elapsed_ms(started),
                exc,
                extra={"format": out_format.value, "duration_ms": _elapsed_ms(started)},
            )
            raise

        render_time_ms = _elapsed_ms(started)
        self.log.info(
            "rendered %s %dx%d in %dms",
            out_format.value,
            capture.width,
            capture.height,
            render_time_ms,
            extra={"format": out_format.value, "duration_ms": render_time_ms},
        )
        return RenderResult(
            payload=capture.payload,
            width=capture.width,
            height=capture.height,
            render_time_ms=render_time_ms,
            mime_type=MIME_TYPES[out_format],
            format=out_format,
        )

    async def _render(self, diagram_text: str, fmt: OutputFormat, opts: RenderOptions) -> _Capture:
        script = await self.script.get()

        if fmt is OutputFormat.html:
            return _Capture(build_viewer_document(diagram_text, opts, script), opts.width, opts.height)

        capture = self._captures[fmt]
        page = None
        try:
            page = await self.session.new_page(width=opts.width, height=opts.height, scale=opts.scale)
            svg, box = await self._draw(page, build_capture_document(diagram_text, opts, script), opts)
            return await capture(page, svg, box, opts)
        except PlaywrightTimeoutError as exc:
            raise RenderTimeout(f"Timed out waiting for the diagram: {exc}") from exc
        except PlaywrightError as exc:
            raise RenderFailed(str(exc)) from exc
        finally:
            if page is not None:
                await self._release(page)

    async def _draw(self, page: Any, document: str, opts: RenderOptions) -> Tuple[Any, Dict[str, float]]:
        timeout = opts.timeout_ms
        await page.set_content(document, wait_until="domcontentloaded", timeout=timeout)
        await page.wait_for_function(SCRIPT_READY_JS, timeout=timeout)
        await page.wait_for_selector(SETTLED_SELECTOR, state="attached", timeout=timeout)

        svg = await page.query_selector(DIAGRAM_SELECTOR)
        if svg is None:
            reason = await page.get_attribute("body", RENDER_ERROR_ATTR)
            message = "Mermaid diagram not found after rendering"
            raise RenderFailed(f"{message}: {reason}" if reason else message)

        box = await svg.bounding_box()
        if not box:
            raise RenderFailed("Could not get diagram dimensions")
        return svg, box

    async def _release(self, page: Any) -> None:
        try:
            await page.close()
        except PlaywrightError as exc:
            self.log.warning("page close failed: %s", exc)

    @staticmethod
    def _size(box: Dict[str, float]) -> Tuple[int, int]:
        return to_px(box["width"]), to_px(box["height"])

    async def _capture_png(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        data = await svg.screenshot(type="png", omit_background=opts.transparent, timeout=opts.timeout_ms)
        return _Capture(data, *self._size(box))

    async def _capture_jpeg(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        data = await svg.screenshot(type="jpeg", quality=opts.quality, timeout=opts.timeout_ms)
        return _Capture(data, *self._size(box))

    async def _capture_svg(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        markup = await svg.evaluate("el => el.outerHTML")
        return _Capture(markup, *self._size(box))

    async def _capture_pdf(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        data = await page.pdf(format="A4", print_background=True, margin=PDF_MARGIN)
        return _Capture(data, PDF_PAGE_WIDTH, PDF_PAGE_HEIGHT)

    async def _capture_reference(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        raster = await self._capture_png(page, svg, box, opts)
        try:
            reference = self.store.save(raster.payload, suffix=".png")
        except OSError as exc:
            raise InternalError(f"could not store rendered image: {exc}") from exc
        return _Capture(reference, raster.width, raster.height)

    async def _capture_data_url(self, page: Any, svg: Any, box: Dict[str, float], opts: RenderOptions) -> _Capture:
        raster = await self._capture_png(page, svg, box, opts)
        encoded = base64.b64encode(raster.payload).decode("ascii")
        return _Capture(f"data:image/png;base64,{encoded}", raster.width, raster.height)

    async def aclose(self) -> None:
        """Shut the browser down, then evict stale artifacts."""
        try:
            await self.session.close()
        finally:
            self.store.sweep()
