from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Theme(str, Enum):
    default = "default"
    dark = "dark"
    neutral = "neutral"


class OutputFormat(str, Enum):
    png = "png"  # raster
    jpeg = "jpeg"  # raster, lossy
    svg = "svg"  # vector markup
    pdf = "pdf"  # paginated document
    html = "html"  # standalone viewer page, no browser involved
    url = "url"  # raster persisted to the artifact store
    base64 = "base64"  # raster as a data: URL


MIME_TYPES: Dict[OutputFormat, str] = {
    OutputFormat.png: "image/png",
    OutputFormat.jpeg: "image/jpeg",
    OutputFormat.svg: "image/svg+xml",
    OutputFormat.pdf: "application/pdf",
    OutputFormat.html: "text/html; charset=utf-8",
    OutputFormat.url: "image/png",
    OutputFormat.base64: "image/png",
}

# Formats whose payload is a reference or data URL and is always framed as JSON.
JSON_FORMATS = frozenset({OutputFormat.url, OutputFormat.base64})

COLOR_PATTERN = r"^(transparent|#[0-9a-fA-F]{3,4}|#[0-9a-fA-F]{6}|#[0-9a-fA-F]{8}|rgba?\([0-9.,%\s]+\)|[a-zA-Z]{3,32})$"


class RenderOptions(BaseModel):
    """Fully resolved render options; the pipeline never sees a partial bag."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    theme: Theme = Theme.default
    width: int = Field(800, ge=100, le=2000)
    height: int = Field(600, ge=100, le=2000)
    background_color: str = Field("#ffffff", alias="backgroundColor", pattern=COLOR_PATTERN)
    # jpeg only
    quality: int = Field(90, ge=1, le=100)
    # device scale factor for every browser-backed format
    scale: float = Field(1.0, ge=0.1, le=3.0)
    timeout_ms: int = Field(
        30000,
        ge=1000,
        le=30000,
        alias="timeoutMs",
        validation_alias=AliasChoices("timeoutMs", "timeout", "timeout_ms"),
    )

    @property
    def transparent(self) -> bool:
        return self.background_color == "transparent"


def resolve_options(
    raw: Optional[Mapping[str, Any]] = None,
    defaults: Optional[Mapping[str, Any]] = None,
) -> RenderOptions:
    """Merge deployment defaults with request options and validate the result.

    Raises pydantic.ValidationError on out-of-range or malformed values.
    """
    merged: Dict[str, Any] = {}
    for source in (defaults or {}, raw or {}):
        for key, value in source.items():
            if value is not None:
                merged[_OPTION_KEYS.get(key, key)] = value
    return RenderOptions.model_validate(merged)


# Every accepted spelling of an option key, mapped to its field name.
_OPTION_KEYS: Dict[str, str] = {
    "backgroundColor": "background_color",
    "timeoutMs": "timeout_ms",
    "timeout": "timeout_ms",
}


class RenderRequest(BaseModel):
    mermaid: str = Field(min_length=1)
    # Validated by the pipeline so unknown tags surface as INVALID_INPUT.
    format: str = OutputFormat.base64.value
    options: Optional[Dict[str, Any]] = None


class RenderMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    width: int
    height: int
    render_time_ms: int = Field(alias="renderTimeMs")
    content_type: str = Field(alias="contentType")


class RenderResponse(BaseModel):
    success: bool = True
    format: str
    data: str
    metadata: RenderMetadata


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorInfo
