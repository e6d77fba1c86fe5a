"""
Standardized Response Format
=============================
Envelope shared by every JSON endpoint, and the mapping from domain errors
to error envelopes.
"""

from datetime import datetime, UTC

from fastapi import Request
from fastapi.responses import JSONResponse

from app.errors import TallyError


def _now() -> str:
    return datetime.now(UTC).isoformat()


def success_response(data, status_code=200, pagination=None):
    """Wrap data in standard success envelope."""
    body = {
        "status": "success",
        "data": data,
        "generated_at": _now(),
    }
    if pagination is not None:
        body["pagination"] = pagination
    return JSONResponse(content=body, status_code=status_code)


def error_response(message, status_code=400, error_type=None):
    """Wrap error in standard error envelope."""
    body = {
        "status": "error",
        "message": message,
        "generated_at": _now(),
    }
    if error_type:
        body["error_type"] = error_type
    return JSONResponse(content=body, status_code=status_code)


async def tally_error_handler(request: Request, exc: TallyError):
    return error_response(str(exc), status_code=exc.status_code, error_type=type(exc).__name__)


async def value_error_handler(request: Request, exc: ValueError):
    return error_response(str(exc), status_code=400, error_type="ValueError")
