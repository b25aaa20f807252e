from __future__ import annotations

import asyncio
import base64

import pytest

from fakes import JPEG_BYTES, PDF_BYTES, PNG_BYTES, SVG_MARKUP, FakeElement, FakeLauncher, FakePage, artifact_path
from services.renderer.artifacts import ArtifactStore
from services.renderer.browser import BrowserSession
from services.renderer.document import ScriptSource
from services.renderer.errors import BrowserUnavailable, InternalError, InvalidInput, RenderFailed, RenderTimeout
from services.renderer.pipeline import PDF_PAGE_HEIGHT, PDF_PAGE_WIDTH, RenderPipeline, parse_format, to_px
from services.shared.models import OutputFormat, RenderOptions

DIAGRAM = "graph TD\nA-->B"


def _pipeline(tmp_path, launcher=None):
    launcher = launcher or FakeLauncher()
    session = BrowserSession(launcher=launcher, resolver=lambda: None)
    store = ArtifactStore(tmp_path / "artifacts")
    return RenderPipeline(session, store, ScriptSource.from_text("window.mermaid = {run() {}};")), launcher


def _render(pipeline, fmt, options=None, **kwargs):
    return asyncio.run(pipeline.render(DIAGRAM, fmt, options, **kwargs))


def test_svg_is_markup_with_rounded_dimensions(tmp_path):
    pipeline, launcher = _pipeline(tmp_path)
    result = _render(pipeline, "svg")

    assert result.payload == SVG_MARKUP
    assert result.payload.startswith("<svg")
    assert (result.width, result.height) == (120, 81)
    assert result.mime_type == "image/svg+xml"
    assert result.format is OutputFormat.svg
    assert result.render_time_ms >= 0

    page = launcher.browsers[0].pages[0]
    assert page.closed
    assert page.viewport == {"width": 800, "height": 600}
    assert "A--&gt;B" in page.content


def test_svg_output_is_repeatable(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    assert _render(pipeline, "svg").payload == _render(pipeline, "svg").payload


def test_png_honours_transparent_background(tmp_path):
    element = FakeElement()
    pipeline, _ = _pipeline(tmp_path, FakeLauncher(page_factory=lambda: FakePage(element=element)))
    opts = RenderOptions(background_color="transparent", scale=2.0)

    result = _render(pipeline, "png", opts)

    assert result.payload.startswith(b"\x89PNG\r\n\x1a\n")
    assert result.mime_type == "image/png"
    assert element.screenshots[-1]["omit_background"] is True


def test_jpeg_uses_requested_quality(tmp_path):
    element = FakeElement()
    pipeline, _ = _pipeline(tmp_path, FakeLauncher(page_factory=lambda: FakePage(element=element)))

    result = _render(pipeline, OutputFormat.jpeg, RenderOptions(quality=55))

    assert result.payload == JPEG_BYTES
    assert result.mime_type == "image/jpeg"
    assert element.screenshots[-1]["type"] == "jpeg"
    assert element.screenshots[-1]["quality"] == 55


def test_pdf_reports_page_size(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    result = _render(pipeline, "pdf")
    assert result.payload == PDF_BYTES
    assert (result.width, result.height) == (PDF_PAGE_WIDTH, PDF_PAGE_HEIGHT)
    assert result.mime_type == "application/pdf"


def test_html_never_touches_the_browser(tmp_path):
    pipeline, launcher = _pipeline(tmp_path)
    result = _render(pipeline, "html", RenderOptions(width=640, height=480))

    assert result.payload.startswith("<!DOCTYPE html>")
    assert (result.width, result.height) == (640, 480)
    assert result.mime_type.startswith("text/html")
    assert launcher.launches == []


def test_url_stores_png_and_returns_reference(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    result = _render(pipeline, "url")

    assert result.payload.startswith("/tmp/mermaid-")
    assert result.payload.endswith(".png")
    assert artifact_path(pipeline.store, result.payload).read_bytes() == PNG_BYTES
    assert (result.width, result.height) == (120, 81)


def test_base64_is_png_data_url(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    result = _render(pipeline, "base64")

    prefix = "data:image/png;base64,"
    assert result.payload.startswith(prefix)
    assert base64.b64decode(result.payload[len(prefix):]) == PNG_BYTES


def test_unknown_format_rejected_before_launch(tmp_path):
    pipeline, launcher = _pipeline(tmp_path)
    with pytest.raises(InvalidInput) as info:
        _render(pipeline, "gif")
    assert "png" in info.value.message
    assert launcher.launches == []


def test_parse_format_is_case_insensitive():
    assert parse_format(" PNG ") is OutputFormat.png


@pytest.mark.parametrize("text", ["", "   \n"])
def test_blank_diagram_rejected(tmp_path, text):
    pipeline, launcher = _pipeline(tmp_path)
    with pytest.raises(InvalidInput):
        asyncio.run(pipeline.render(text, "svg"))
    assert launcher.launches == []


def test_invalid_diagram_is_render_failed_with_reason(tmp_path):
    pipeline, launcher = _pipeline(
        tmp_path, FakeLauncher(page_factory=lambda: FakePage(render_error="Parse error on line 1"))
    )
    with pytest.raises(RenderFailed) as info:
        _render(pipeline, "png")
    assert "Mermaid diagram not found after rendering" in info.value.message
    assert "Parse error on line 1" in info.value.message
    assert launcher.browsers[0].pages[0].closed


def test_missing_bounding_box_is_render_failed(tmp_path):
    element = FakeElement(box={})
    pipeline, _ = _pipeline(tmp_path, FakeLauncher(page_factory=lambda: FakePage(element=element)))
    with pytest.raises(RenderFailed) as info:
        _render(pipeline, "png")
    assert info.value.message == "Could not get diagram dimensions"


def test_wait_timeout_is_render_timeout(tmp_path):
    pipeline, launcher = _pipeline(
        tmp_path, FakeLauncher(page_factory=lambda: FakePage(fail_at="wait_for_function"))
    )
    with pytest.raises(RenderTimeout):
        _render(pipeline, "svg")
    assert launcher.browsers[0].pages[0].closed


def test_pdf_generation_failure_is_render_failed(tmp_path):
    pipeline, launcher = _pipeline(tmp_path, FakeLauncher(page_factory=lambda: FakePage(fail_at="pdf")))
    with pytest.raises(RenderFailed):
        _render(pipeline, "pdf")
    assert launcher.browsers[0].pages[0].closed


def test_deadline_cancels_and_still_closes_page(tmp_path):
    pipeline, launcher = _pipeline(
        tmp_path, FakeLauncher(page_factory=lambda: FakePage(hang_at="wait_for_selector"))
    )
    with pytest.raises(RenderTimeout):
        _render(pipeline, "svg", deadline_s=0.2)
    assert launcher.browsers[0].pages[0].closed


def test_browser_unavailable_propagates(tmp_path):
    pipeline, _ = _pipeline(tmp_path, FakeLauncher(failing={None}))
    with pytest.raises(BrowserUnavailable):
        _render(pipeline, "png")


def test_concurrent_renders_share_one_browser(tmp_path):
    pipeline, launcher = _pipeline(tmp_path, FakeLauncher(delay=0.05))

    async def _many():
        return await asyncio.gather(*(pipeline.render(DIAGRAM, "svg") for _ in range(8)))

    results = asyncio.run(_many())
    assert len(results) == 8
    assert len(launcher.launches) == 1
    assert all(p.closed for p in launcher.browsers[0].pages)


def test_aclose_closes_browser_and_sweeps(tmp_path):
    pipeline, launcher = _pipeline(tmp_path)
    _render(pipeline, "url")
    swept = []
    pipeline.store.sweep = lambda: swept.append(True) or 0

    asyncio.run(pipeline.aclose())

    assert launcher.browsers[0].closed
    assert swept == [True]


def test_half_pixel_boxes_round_up(tmp_path):
    element = FakeElement(box={"x": 20.0, "y": 20.0, "width": 120.5, "height": 80.5})
    pipeline, _ = _pipeline(tmp_path, FakeLauncher(page_factory=lambda: FakePage(element=element)))
    result = _render(pipeline, "svg")
    assert (result.width, result.height) == (121, 81)


@pytest.mark.parametrize("value, expected", [(0.5, 1), (1.5, 2), (2.5, 3), (80.49, 80), ("120.5", 121)])
def test_to_px(value, expected):
    assert to_px(value) == expected


def test_store_failure_is_internal_error_and_page_closed(tmp_path):
    pipeline, launcher = _pipeline(tmp_path)

    def broken_save(data, *, suffix=".png"):
        raise OSError(28, "No space left on device")

    pipeline.store.save = broken_save
    with pytest.raises(InternalError) as info:
        _render(pipeline, "url")
    assert "No space left on device" in info.value.message
    assert launcher.browsers[0].pages[0].closed


def test_aclose_sweeps_even_when_close_fails(tmp_path):
    pipeline, _ = _pipeline(tmp_path)
    swept = []
    pipeline.store.sweep = lambda: swept.append(True) or 0

    async def broken_close():
        raise RuntimeError("driver gone")

    pipeline.session.close = broken_close
    with pytest.raises(RuntimeError):
        asyncio.run(pipeline.aclose())
    assert swept == [True]
