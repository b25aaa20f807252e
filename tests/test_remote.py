from __future__ import annotations

import asyncio
import base64

import httpx
import pytest

from fakes import PNG_BYTES, SVG_MARKUP
from services.renderer.errors import FormatNotImplemented, RenderFailed, RenderTimeout
from services.renderer.remote import RemoteRenderer, encode_diagram, svg_size
from services.shared.models import OutputFormat, RenderOptions, Theme

DIAGRAM = "graph TD\nA-->B"


def _renderer(handler):
    return RemoteRenderer("https://ink.example/", transport=httpx.MockTransport(handler))


def test_encode_diagram_is_urlsafe_without_padding():
    code = encode_diagram("graph TD\nA-->B?")
    assert "=" not in code
    assert "+" not in code and "/" not in code
    padded = code + "=" * (-len(code) % 4)
    assert base64.urlsafe_b64decode(padded).decode("utf-8") == "graph TD\nA-->B?"


def test_svg_size_reads_viewbox():
    assert svg_size(SVG_MARKUP) == (121, 80)
    assert svg_size("<svg></svg>") == (0, 0)


def test_svg_request_path_and_params():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=SVG_MARKUP)

    opts = RenderOptions(theme=Theme.dark, background_color="#1e1e1e")
    result = asyncio.run(_renderer(handler).render(DIAGRAM, "svg", opts))

    req = seen[0]
    assert req.url.path == f"/svg/{encode_diagram(DIAGRAM)}"
    assert req.url.params["theme"] == "dark"
    assert req.url.params["bgColor"] == "1e1e1e"
    assert result.payload == SVG_MARKUP
    assert (result.width, result.height) == (121, 80)
    assert result.mime_type == "image/svg+xml"


def test_png_uses_img_endpoint_and_named_colour():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=PNG_BYTES)

    result = asyncio.run(_renderer(handler).render(DIAGRAM, OutputFormat.png, RenderOptions(background_color="white")))

    assert seen[0].url.path.startswith("/img/")
    assert seen[0].url.params["type"] == "png"
    assert seen[0].url.params["bgColor"] == "!white"
    assert result.payload == PNG_BYTES


def test_transparent_background_sends_no_colour():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"%PDF-1.7")

    asyncio.run(_renderer(handler).render(DIAGRAM, "pdf", RenderOptions(background_color="transparent")))
    assert seen[0].url.path.startswith("/pdf/")
    assert "bgColor" not in seen[0].url.params


def test_base64_is_svg_data_url():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=SVG_MARKUP)

    result = asyncio.run(_renderer(handler).render(DIAGRAM, "base64"))
    prefix = "data:image/svg+xml;base64,"
    assert result.payload.startswith(prefix)
    assert base64.b64decode(result.payload[len(prefix):]).decode("utf-8") == SVG_MARKUP
    assert result.mime_type == "image/svg+xml"


@pytest.mark.parametrize("fmt", ["html", "url"])
def test_browser_only_formats_not_implemented(fmt):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(FormatNotImplemented) as info:
        asyncio.run(_renderer(handler).render(DIAGRAM, fmt))
    assert info.value.status_code == 501


def test_upstream_rejection_is_render_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="Syntax error in graph")

    with pytest.raises(RenderFailed) as info:
        asyncio.run(_renderer(handler).render(DIAGRAM, "svg"))
    assert "400" in info.value.message


def test_upstream_timeout_is_render_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(RenderTimeout):
        asyncio.run(_renderer(handler).render(DIAGRAM, "png"))


def test_connection_error_is_render_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RenderFailed):
        asyncio.run(_renderer(handler).render(DIAGRAM, "png"))
