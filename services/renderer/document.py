"""HTML documents that host the Mermaid script, and the loader for the script itself.

Two documents are built from the same pieces:

* the capture document, loaded into a headless page and screenshotted/printed;
* the viewer document, returned as-is for a human to open in a browser.

Both inline the Mermaid bundle so rendering never depends on a CDN being reachable
from the page.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import httpx

from services.renderer.errors import InternalError
from services.shared.models import RenderOptions


CONTAINER_ID = "mermaid-diagram"
# Set on <body> once mermaid.run settles: "done" or "error".
RENDER_STATE_ATTR = "data-render-state"
RENDER_ERROR_ATTR = "data-render-error"

logger = logging.getLogger("mermaid_gateway.script")


class ScriptSource:
    """The Mermaid bundle as an opaque text blob, loaded once per process."""

    def __init__(
        self,
        path: Optional[Path] = None,
        url: Optional[str] = None,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._text: Optional[str] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_text(cls, text: str) -> "ScriptSource":
        src = cls()
        src._text = text
        return src

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._text is not None

    async def get(self) -> str:
        if self._text is not None:
            return self._text
        async with self._lock:
            if self._text is None:
                self._text = await self._load()
        return self._text

    async def _load(self) -> str:
        if self._path is not None and self._path.is_file():
            logger.info("loading mermaid script from %s", self._path)
            try:
                return self._path.read_text(encoding="utf-8")
            except OSError as exc:
                raise InternalError(f"could not read mermaid script {self._path}: {exc}") from exc

        if not self._url:
            raise InternalError("mermaid script not found and no download URL configured")

        logger.info("downloading mermaid script from %s", self._url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport, follow_redirects=True) as client:
                resp = await client.get(self._url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise InternalError(f"could not download mermaid script: {exc}") from exc

        text = resp.text
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(text, encoding="utf-8")
            except OSError as exc:
                # Still usable from memory for this process.
                logger.warning("could not cache mermaid script at %s: %s", self._path, exc)
        return text


def _inline_script(source: str) -> str:
    # A literal "</script" inside the bundle would end the element early.
    return source.replace("</script", "<\\/script")


def _mermaid_config(options: RenderOptions) -> str:
    cfg: Dict[str, Any] = {
        "startOnLoad": False,
        "theme": options.theme.value,
        "securityLevel": "loose",
        "fontFamily": "Arial, sans-serif",
        "deterministicIds": True,
        "suppressErrorRendering": True,
    }
    return json.dumps(cfg)


def _background(options: RenderOptions) -> str:
    return "transparent" if options.transparent else options.background_color


_CAPTURE_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    body {
      margin: 0;
      padding: 20px;
      background-color: $background;
      font-family: Arial, sans-serif;
    }
    #$container {
      display: flex;
      justify-content: center;
      align-items: center;
    }
  </style>
  <script>$script</script>
</head>
<body>
  <div id="$container">
    <div class="mermaid">
$diagram
    </div>
  </div>
  <script>
    (function () {
      mermaid.initialize($config);
      window.addEventListener("load", function () {
        var nodes = document.querySelectorAll("#$container .mermaid");
        mermaid.run({ nodes: nodes }).then(function () {
          document.body.setAttribute("$state_attr", "done");
        }).catch(function (err) {
          document.body.setAttribute("$error_attr", String((err && err.message) || err));
          document.body.setAttribute("$state_attr", "error");
        });
      });
    })();
  </script>
</body>
</html>
"""
)


_VIEWER_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Mermaid Diagram</title>
  <style>
    body {
      margin: 0;
      padding: 20px;
      background-color: $background;
      font-family: Arial, sans-serif;
      display: flex;
      justify-content: center;
      align-items: center;
      min-height: 100vh;
    }
    #$container {
      max-width: ${width}px;
      max-height: ${height}px;
    }
    .loading {
      color: #666;
      font-size: 14px;
    }
    .render-error {
      color: red;
    }
  </style>
</head>
<body>
  <div id="$container">
    <div class="loading">Loading diagram...</div>
    <div class="mermaid" style="display: none;">
$diagram
    </div>
  </div>
  <script>$script</script>
  <script>
    (function () {
      mermaid.initialize($config);
      document.addEventListener("DOMContentLoaded", function () {
        var loading = document.querySelector("#$container .loading");
        var target = document.querySelector("#$container .mermaid");
        mermaid.run({ nodes: [target] }).then(function () {
          loading.style.display = "none";
          target.style.display = "block";
          if (window.parent !== window) {
            var svg = target.querySelector("svg");
            if (svg) {
              var box = svg.getBBox();
              window.parent.postMessage({ type: "mermaid-rendered", width: box.width, height: box.height }, "*");
            }
          }
        }).catch(function (err) {
          loading.className = "render-error";
          loading.textContent = "Diagram rendering failed: " + ((err && err.message) || err);
        });
      });
    })();
  </script>
</body>
</html>
"""
)


def build_capture_document(diagram_text: str, options: RenderOptions, script_source: str) -> str:
    """Document for server-side capture; marks <body> with the render outcome."""
    return _CAPTURE_TEMPLATE.substitute(
        background=_background(options),
        container=CONTAINER_ID,
        script=_inline_script(script_source),
        diagram=html.escape(diagram_text, quote=False),
        config=_mermaid_config(options),
        state_attr=RENDER_STATE_ATTR,
        error_attr=RENDER_ERROR_ATTR,
    )


def build_viewer_document(diagram_text: str, options: RenderOptions, script_source: str) -> str:
    """Standalone page for direct viewing; renders client-side, no server browser needed."""
    return _VIEWER_TEMPLATE.substitute(
        background=_background(options),
        container=CONTAINER_ID,
        width=options.width,
        height=options.height,
        script=_inline_script(script_source),
        diagram=html.escape(diagram_text, quote=False),
        config=_mermaid_config(options),
    )
