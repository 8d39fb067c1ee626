from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imgbed.apps.api.response import error_payload
from imgbed.core.errors import ImgbedError


logger = logging.getLogger(__name__)


def _detail_message(detail: Any) -> str:
    if isinstance(detail, dict):
        return str(detail.get("message") or "Request failed")
    if isinstance(detail, str):
        return detail
    return "Request failed"


async def imgbed_error_handler(request: Request, exc: ImgbedError) -> JSONResponse:
    # Domain errors already carry the HTTP status and a client-safe message.
    return JSONResponse(content=error_payload(exc.status_code, exc.message), status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_payload(exc.status_code, _detail_message(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed query/body parameters are plain 400s for these clients.
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in {"body", "query"})
    message = first.get("msg", "Validation error")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(content=error_payload(400, message), status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the full error goes to the server log.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_payload(500, "Internal server error"), status_code=500)
