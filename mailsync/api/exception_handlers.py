"""Exception handlers for the ops app.

Maps domain exceptions to HTTP responses; anything else is a 500.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import MailSyncException
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

_ERROR_CODE_STATUS: dict[str, int] = {
    "RESOURCE_NOT_FOUND": 404,
    "PROVIDER_INACTIVE": 409,
    "UNSUPPORTED_PROVIDER": 400,
}


def _mailsync_exception_handler(request: Request, exc: MailSyncException) -> JSONResponse:
    """Return JSON from MailSyncException.to_dict() with an appropriate status code."""
    status = _ERROR_CODE_STATUS.get(exc.error_code, 400)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500; include detail only when debug is True."""
    logger.exception("Unhandled exception on %s", request.url.path)
    detail: Any = str(exc) if get_settings().debug else "Internal server error"
    return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR", "message": detail})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MailSyncException, _mailsync_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
