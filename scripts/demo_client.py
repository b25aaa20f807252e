"""Exercise every output format of a running gateway and save the results.

Usage:
  python scripts/demo_client.py

Outputs:
  demo-output/diagram.<ext>
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import httpx


GATEWAY_URL = os.environ.get("GATEWAY_URL", "http://localhost:3000")
OUT_DIR = Path(os.environ.get("DEMO_OUT_DIR", "demo-output"))

DIAGRAM = "graph TD\n  A[Start] --> B{Check}\n  B -->|yes| C[Do A]\n  B -->|no| D[Do B]\n  C --> E[End]\n  D --> E"
OPTIONS = {"theme": "default", "width": 800, "height": 600, "backgroundColor": "#ffffff"}

EXTENSIONS = {"png": "png", "jpeg": "jpg", "svg": "svg", "pdf": "pdf", "html": "html"}


async def run():
    OUT_DIR.mkdir(parents=True, exist_ok=True)
    async with httpx.AsyncClient(base_url=GATEWAY_URL, timeout=60.0) as client:
        print("health:", (await client.get("/health")).json())

        for fmt in ["base64", "png", "jpeg", "svg", "pdf", "html", "url"]:
            r = await client.post("/render", json={"mermaid": DIAGRAM, "format": fmt, "options": OPTIONS})
            print(f"\n--- {fmt}: HTTP {r.status_code} ({r.headers.get('content-type')}) ---")
            if r.status_code != 200:
                print(r.json())
                continue

            if fmt == "base64":
                body = r.json()
                print("metadata:", body["metadata"], "| data length:", len(body["data"]))
            elif fmt == "url":
                body = r.json()
                print("metadata:", body["metadata"], "| url:", body["data"])
                image = await client.get(body["data"])
                target = OUT_DIR / "diagram-from-url.png"
                target.write_bytes(image.content)
                print(f"downloaded {len(image.content)} bytes -> {target}")
            else:
                target = OUT_DIR / f"diagram.{EXTENSIONS[fmt]}"
                target.write_bytes(r.content)
                print(
                    f"{r.headers.get('x-render-width')}x{r.headers.get('x-render-height')} "
                    f"in {r.headers.get('x-render-time-ms')}ms -> {target}"
                )


if __name__ == "__main__":
    asyncio.run(run())
