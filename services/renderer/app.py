from __future__ import annotations

import base64
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from services.renderer.artifacts import ArtifactStore
from services.renderer.browser import BrowserSession
from services.renderer.document import ScriptSource
from services.renderer.errors import InternalError, InvalidInput, RenderError
from services.renderer.pipeline import RenderPipeline, RenderResult
from services.renderer.remote import RemoteRenderer
from services.shared.config import ConfigStore
from services.shared.models import (
    JSON_FORMATS,
    ErrorInfo,
    ErrorResponse,
    RenderMetadata,
    RenderOptions,
    RenderRequest,
    RenderResponse,
    resolve_options,
)
from services.shared.otel import instrument_fastapi, setup_otel
from services.shared.runtime import (
    RuntimeConfig,
    ensure_request_id,
    get_runtime_config,
    load_env_file,
    setup_logging,
)


SERVICE_NAME = "mermaid-render-gateway"

logger = logging.getLogger("mermaid_gateway.app")


def build_pipeline(runtime: RuntimeConfig) -> RenderPipeline:
    session = BrowserSession(
        executable_path=runtime.chrome_path,
        launch_timeout_ms=runtime.launch_timeout_ms,
    )
    store = ArtifactStore(
        runtime.artifact_dir,
        url_prefix=runtime.artifact_prefix,
        max_age_seconds=runtime.artifact_max_age_s,
    )
    script = ScriptSource(runtime.mermaid_script_path, runtime.mermaid_script_url)
    return RenderPipeline(session, store, script)


def _error_response(exc: RenderError, *, show_details: bool) -> JSONResponse:
    message = exc.public_message if isinstance(exc, InternalError) else exc.message
    info = ErrorInfo(code=exc.code, message=message, details=exc.details if show_details else None)
    body = ErrorResponse(error=info).model_dump(exclude_none=True)
    return JSONResponse(status_code=exc.status_code, content=body)


def _result_response(result: RenderResult, *, envelope: bool) -> Response:
    if envelope or result.format in JSON_FORMATS:
        payload = result.payload
        data = base64.b64encode(payload).decode("ascii") if isinstance(payload, bytes) else payload
        body = RenderResponse(
            format=result.format.value,
            data=data,
            metadata=RenderMetadata(
                width=result.width,
                height=result.height,
                render_time_ms=result.render_time_ms,
                content_type=result.mime_type,
            ),
        )
        return JSONResponse(content=body.model_dump(by_alias=True))

    return Response(
        content=result.payload,
        media_type=result.mime_type,
        headers={
            "X-Render-Width": str(result.width),
            "X-Render-Height": str(result.height),
            "X-Render-Time-Ms": str(result.render_time_ms),
        },
    )


def create_app(
    *,
    pipeline: Optional[RenderPipeline] = None,
    remote: Optional[RemoteRenderer] = None,
    runtime: Optional[RuntimeConfig] = None,
    config: Optional[ConfigStore] = None,
) -> FastAPI:
    runtime = runtime or get_runtime_config(service_name=SERVICE_NAME)
    pipeline = pipeline or build_pipeline(runtime)
    remote = remote or RemoteRenderer(runtime.mermaid_ink_url)
    config = config or ConfigStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting %s", SERVICE_NAME)
        try:
            await pipeline.script.get()
        except RenderError as exc:
            logger.warning("mermaid script not preloaded, will retry on first render: %s", exc.message)
        yield
        logger.info("shutting down %s", SERVICE_NAME)
        await pipeline.aclose()

    app = FastAPI(title="Mermaid Render Gateway", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = pipeline
    app.state.remote = remote
    app.state.runtime = runtime

    # OTel instrumentation is a no-op unless GATEWAY_OTEL_ENABLED=1.
    instrument_fastapi(app, runtime)

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):
        rid = ensure_request_id(request.headers.get(runtime.request_id_header))
        started = time.perf_counter()
        request.state.request_id = rid
        resp = await call_next(request)
        resp.headers.setdefault("X-Request-Id", rid)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "request",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status_code": getattr(resp, "status_code", None),
                "duration_ms": duration_ms,
            },
        )
        return resp

    @app.exception_handler(RenderError)
    async def _render_error(request: Request, exc: RenderError):
        if isinstance(exc, InternalError):
            logger.error("internal error: %s", exc.message, exc_info=exc)
        return _error_response(exc, show_details=runtime.show_error_details)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg") or "Invalid request")
        details = None
        if runtime.show_error_details:
            details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
        return _error_response(InvalidInput(message, details=details), show_details=runtime.show_error_details)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error on %s", request.url.path)
        return _error_response(InternalError(str(exc)), show_details=False)

    def _options(req: RenderRequest) -> RenderOptions:
        try:
            return resolve_options(req.options, config.render_defaults())
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first.get("loc", ()))
            raise InvalidInput(f"options.{where}: {first.get('msg')}" if where else "Invalid options") from exc

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"message": "Mermaid Render Gateway is running!"}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "browser": pipeline.session.state.value,
        }

    @app.post("/render")
    async def render(req: RenderRequest, envelope: bool = False):
        options = _options(req)
        result = await pipeline.render(
            req.mermaid,
            req.format,
            options,
            deadline_s=runtime.request_deadline_ms / 1000,
        )
        return _result_response(result, envelope=envelope)

    @app.post("/render/remote")
    async def render_remote(req: RenderRequest, envelope: bool = False):
        options = _options(req)
        result = await remote.render(req.mermaid, req.format, options)
        return _result_response(result, envelope=envelope)

    store = pipeline.store
    store.ensure_directory()
    app.mount(store.url_prefix, StaticFiles(directory=str(store.directory)), name="artifacts")

    return app


def create_default_app() -> FastAPI:
    """Factory used by `uvicorn --factory` and the CLI: env file, logging, tracing, app."""
    load_env_file()
    runtime = get_runtime_config(service_name=SERVICE_NAME)
    setup_logging(service_name=SERVICE_NAME, config=runtime)
    setup_otel(runtime)
    return create_app(runtime=runtime)
