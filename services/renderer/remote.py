from __future__ import annotations

import base64
import logging
import re
import time
from typing import Dict, Optional, Tuple, Union

import httpx

from services.renderer.errors import FormatNotImplemented, InvalidInput, RenderFailed, RenderTimeout
from services.renderer.pipeline import RenderResult, parse_format, to_px
from services.shared.models import MIME_TYPES, OutputFormat, RenderOptions


_VIEWBOX = re.compile(r'viewBox="\s*[-\d.]+[\s,]+[-\d.]+[\s,]+([\d.]+)[\s,]+([\d.]+)\s*"')
_HEX = re.compile(r"^#([0-9a-fA-F]{3,8})$")


def encode_diagram(diagram_text: str) -> str:
    """URL-safe base64 without padding, the encoding mermaid.ink expects in its path."""
    return base64.urlsafe_b64encode(diagram_text.encode("utf-8")).decode("ascii").rstrip("=")


def svg_size(markup: str) -> Tuple[int, int]:
    m = _VIEWBOX.search(markup)
    if not m:
        return 0, 0
    return to_px(m.group(1)), to_px(m.group(2))


class RemoteRenderer:
    """Delegates rendering to the mermaid.ink HTTP API; no local browser involved."""

    SUPPORTED = frozenset({OutputFormat.svg, OutputFormat.png, OutputFormat.jpeg, OutputFormat.pdf, OutputFormat.base64})

    def __init__(
        self,
        base_url: str = "https://mermaid.ink",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.log = logger or logging.getLogger("mermaid_gateway.remote")

    def _request(self, fmt: OutputFormat, code: str, opts: RenderOptions) -> Tuple[str, Dict[str, str]]:
        params: Dict[str, str] = {"theme": opts.theme.value}
        if not opts.transparent:
            m = _HEX.match(opts.background_color)
            if m:
                params["bgColor"] = m.group(1)
            elif opts.background_color.isalpha():
                params["bgColor"] = f"!{opts.background_color}"

        if fmt in (OutputFormat.svg, OutputFormat.base64):
            return f"{self.base_url}/svg/{code}", params
        if fmt is OutputFormat.pdf:
            return f"{self.base_url}/pdf/{code}", params
        params["type"] = fmt.value
        return f"{self.base_url}/img/{code}", params

    async def render(
        self,
        diagram_text: str,
        fmt: Union[OutputFormat, str],
        options: Optional[RenderOptions] = None,
    ) -> RenderResult:
        started = time.perf_counter()
        out_format = parse_format(fmt)
        if out_format not in self.SUPPORTED:
            raise FormatNotImplemented(f"Format '{out_format.value}' is not supported by the remote renderer")
        if not isinstance(diagram_text, str) or not diagram_text.strip():
            raise InvalidInput("Mermaid code is required and must be a non-empty string")
        opts = options or RenderOptions()

        url, params = self._request(out_format, encode_diagram(diagram_text), opts)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise RenderTimeout(f"mermaid.ink did not answer in time: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RenderFailed(f"mermaid.ink request failed: {exc}") from exc

        if resp.status_code != 200:
            self.log.warning("mermaid.ink returned %s", resp.status_code, extra={"status_code": resp.status_code})
            raise RenderFailed(f"mermaid.ink returned {resp.status_code}: {resp.text[:200]}")

        payload: Union[bytes, str]
        width = height = 0
        if out_format is OutputFormat.svg:
            payload = resp.text
            width, height = svg_size(payload)
        elif out_format is OutputFormat.base64:
            width, height = svg_size(resp.text)
            payload = "data:image/svg+xml;base64," + base64.b64encode(resp.content).decode("ascii")
        else:
            payload = resp.content

        mime = "image/svg+xml" if out_format is OutputFormat.base64 else MIME_TYPES[out_format]
        return RenderResult(
            payload=payload,
            width=width,
            height=height,
            render_time_ms=max(0, int((time.perf_counter() - started) * 1000)),
            mime_type=mime,
            format=out_format,
        )
