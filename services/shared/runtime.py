from __future__ import annotations

import json
import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv


DEFAULT_MERMAID_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/mermaid@11.9.0/dist/mermaid.min.js"


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration for the render gateway.

    Every environment switch is parsed here once; components receive plain values.
    """

    env: str
    log_level: str
    log_format: str
    request_id_header: str

    # Browser
    chrome_path: str | None
    launch_timeout_ms: int
    request_deadline_ms: int

    # Rendering script
    mermaid_script_path: Path
    mermaid_script_url: str | None
    mermaid_ink_url: str

    # Artifact store
    artifact_dir: Path
    artifact_prefix: str
    artifact_max_age_s: int

    # Server
    host: str
    port: int

    # Observability (optional)
    otel_enabled: bool
    otel_service_name: str
    otel_exporter_otlp_endpoint: str | None

    @property
    def show_error_details(self) -> bool:
        return self.env in {"dev", "development"}


def _env(name: str, default: str | None = None) -> str | None:
    v = os.environ.get(name)
    if v is None:
        return default
    v = str(v).strip()
    return v if v != "" else default


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def load_env_file(path: str | Path | None = None) -> bool:
    """Load a `.env` file (default: current directory) without overriding real env vars."""
    return load_dotenv(path or Path.cwd() / ".env", override=False)


def get_runtime_config(*, service_name: str) -> RuntimeConfig:
    env = (_env("GATEWAY_ENV", _env("ENV", "dev")) or "dev").lower()

    # Log format: json or text
    log_format = (_env("GATEWAY_LOG_FORMAT", "json") or "json").lower()
    log_level = (_env("GATEWAY_LOG_LEVEL", "INFO") or "INFO").upper()

    request_id_header = (_env("GATEWAY_REQUEST_ID_HEADER", "x-request-id") or "x-request-id").lower()

    # Explicit browser override; name kept compatible with the setup script.
    chrome_path = _env("CHROME_PATH")
    launch_timeout_ms = _env_int("GATEWAY_LAUNCH_TIMEOUT_MS", 30000)
    request_deadline_ms = _env_int("GATEWAY_REQUEST_DEADLINE_MS", 90000)

    mermaid_script_path = Path(_env("MERMAID_SCRIPT_PATH", "vendor/mermaid.min.js") or "vendor/mermaid.min.js")
    mermaid_script_url = _env("MERMAID_SCRIPT_URL", DEFAULT_MERMAID_SCRIPT_URL)
    mermaid_ink_url = (_env("MERMAID_INK_URL", "https://mermaid.ink") or "https://mermaid.ink").rstrip("/")

    artifact_dir = Path(_env("GATEWAY_ARTIFACT_DIR", "public/tmp") or "public/tmp")
    artifact_prefix = "/" + (_env("GATEWAY_ARTIFACT_PREFIX", "/tmp") or "/tmp").strip("/")
    artifact_max_age_s = _env_int("GATEWAY_ARTIFACT_MAX_AGE_S", 3600)

    host = _env("HOST", "0.0.0.0") or "0.0.0.0"
    port = _env_int("PORT", 3000)

    # OTel
    otel_enabled = _env_bool("GATEWAY_OTEL_ENABLED", default=False)
    otel_service_name = _env("OTEL_SERVICE_NAME", service_name) or service_name
    otel_exporter_otlp_endpoint = _env("OTEL_EXPORTER_OTLP_ENDPOINT")

    return RuntimeConfig(
        env=env,
        log_level=log_level,
        log_format=log_format,
        request_id_header=request_id_header,
        chrome_path=chrome_path,
        launch_timeout_ms=launch_timeout_ms,
        request_deadline_ms=request_deadline_ms,
        mermaid_script_path=mermaid_script_path,
        mermaid_script_url=mermaid_script_url,
        mermaid_ink_url=mermaid_ink_url,
        artifact_dir=artifact_dir,
        artifact_prefix=artifact_prefix,
        artifact_max_age_s=artifact_max_age_s,
        host=host,
        port=port,
        otel_enabled=otel_enabled,
        otel_service_name=otel_service_name,
        otel_exporter_otlp_endpoint=otel_exporter_otlp_endpoint,
    )


def _json_log_record(level: str, msg: str, *, extra: Mapping[str, Any] | None = None) -> str:
    body: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "level": level,
        "msg": msg,
    }
    if extra:
        for k, v in extra.items():
            if v is None:
                continue
            body[k] = v
    return json.dumps(body, ensure_ascii=False)


_EXTRA_KEYS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "duration_ms",
    "format",
    "executable",
    "state",
)


def setup_logging(*, service_name: str, config: RuntimeConfig | None = None) -> None:
    cfg = config or get_runtime_config(service_name=service_name)
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.log_level, logging.INFO))

    # Clear default handlers (uvicorn adds its own; this keeps tests predictable)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stdout)

    if cfg.log_format == "json":
        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
                extra = {
                    "logger": record.name,
                    "service": service_name,
                }
                # Allow app code to attach extra context
                for key in _EXTRA_KEYS:
                    if hasattr(record, key):
                        extra[key] = getattr(record, key)
                if record.exc_info:
                    extra["exc_info"] = self.formatException(record.exc_info)
                return _json_log_record(record.levelname, record.getMessage(), extra=extra)

        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)


def ensure_request_id(incoming: str | None = None) -> str:
    """Return a request id; generate if missing."""
    v = (incoming or "").strip()
    if v:
        return v[:128]
    return uuid.uuid4().hex
