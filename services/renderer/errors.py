from __future__ import annotations

from typing import Any, Optional


class RenderError(Exception):
    """Base of every failure the gateway reports to callers with a stable code."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(RenderError):
    code = "INVALID_INPUT"
    status_code = 400


class FormatNotImplemented(RenderError):
    code = "NOT_IMPLEMENTED"
    status_code = 501


class BrowserUnavailable(RenderError):
    code = "BROWSER_UNAVAILABLE"
    status_code = 503


class RenderTimeout(RenderError):
    code = "RENDER_TIMEOUT"
    status_code = 504


class RenderFailed(RenderError):
    code = "RENDER_FAILED"
    status_code = 500


class InternalError(RenderError):
    code = "INTERNAL_ERROR"
    status_code = 500

    # What callers see; the real message only goes to the logs.
    public_message = "Internal server error"
