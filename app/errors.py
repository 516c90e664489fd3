"""Error taxonomy for the scheduler and the FastAPI handlers that expose it.

    ScheduleError (base)
    ├── ValidationError  – malformed submission, item never created   → 400
    ├── DispatchError    – send / toggle failed, item stays pending    → 502
    └── StoreError       – persistence layer unreachable or failing    → 500

Inside a tick only ``DispatchError`` and ``StoreError`` can occur and both are
contained by the tick handler; the HTTP mapping below is for the API surface.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

_LOGGER = logging.getLogger(__name__)


class ScheduleError(Exception):
    default_message = "An error occurred"
    code = "UNKNOWN"
    status_code = 500

    def __init__(self, message: str | None = None, *, details: list[str] | None = None):
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)


class ValidationError(ScheduleError):
    default_message = "Invalid schedule submission"
    code = "VALIDATION_FAILED"
    status_code = 400


class DispatchError(ScheduleError):
    default_message = "Chat session failed to deliver"
    code = "DISPATCH_FAILED"
    status_code = 502


class StoreError(ScheduleError):
    default_message = "Schedule store unavailable"
    code = "STORE_FAILED"
    status_code = 500


def build_error_response(error: ScheduleError) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": error.__class__.__name__,
        "code": error.code,
        "detail": error.message,
    }
    if error.details:
        body["details"] = error.details
    return body


async def schedule_error_handler(request: Request, exc: ScheduleError) -> JSONResponse:
    if exc.status_code >= 500:
        _LOGGER.error(
            "Server error on %s %s: %s (code=%s)",
            request.method, request.url.path, exc.message, exc.code,
            exc_info=exc.__cause__ or exc,
        )
    else:
        _LOGGER.warning("Client error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=build_error_response(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the ScheduleError handler to *app* (covers every subclass)."""
    app.add_exception_handler(ScheduleError, schedule_error_handler)
