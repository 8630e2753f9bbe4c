# palmai_core/errors.py
"""
Error taxonomy shared by every handler.

Each error knows its HTTP status and renders as a JSON object carrying an
``error`` string plus optional structured detail (missing fields, quota
counters). ``main.py`` registers :func:`app_error_handler` for all of them.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

log = logging.getLogger("errors")


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class AuthError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Admin access required"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class QuotaExceeded(AppError):
    status_code = 429
    default_message = "Daily message limit reached"


class UpstreamError(AppError):
    """Completion API or payment provider failed; detail stays server-side."""
    status_code = 500
    default_message = "Upstream service failed"


class PersistenceError(AppError):
    status_code = 500
    default_message = "Database operation failed"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        log.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.body())
