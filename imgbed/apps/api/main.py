from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from imgbed.apps.api.errors import (
    http_exception_handler,
    imgbed_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from imgbed.apps.api.routes.admin_access_logs import router as admin_access_logs_router
from imgbed.apps.api.routes.admin_assets import router as admin_assets_router
from imgbed.apps.api.routes.admin_logs import router as admin_logs_router
from imgbed.apps.api.routes.admin_quota import router as admin_quota_router
from imgbed.apps.api.routes.files import router as files_router
from imgbed.apps.api.routes.health import router as health_router
from imgbed.apps.api.routes.moderation import router as moderation_router
from imgbed.apps.api.routes.tags import router as tags_router
from imgbed.apps.api.routes.uploads import router as uploads_router
from imgbed.core.config import get_settings
from imgbed.core.errors import ImgbedError
from imgbed.core.logging import configure_logging
from imgbed.persistence.schema import ensure_schema
from imgbed.services.telemetry import record_request


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create missing tables once per process instead of per request.
    await ensure_schema()
    logger.info("app_started name=%s", get_settings().app_name)
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="imgbed API", lifespan=lifespan)

    @app.middleware("http")
    async def request_metrics_middleware(request: Request, call_next):  # type: ignore[override]
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        return response

    @app.exception_handler(ImgbedError)
    async def _imgbed_error_handler(request: Request, exc: ImgbedError):
        return await imgbed_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(uploads_router)
    app.include_router(files_router)
    app.include_router(moderation_router)
    app.include_router(admin_logs_router)
    app.include_router(admin_access_logs_router)
    app.include_router(admin_quota_router)
    # Asset index maintenance: listing, deletion and tag edits.
    app.include_router(admin_assets_router)
    app.include_router(tags_router)
    app.include_router(health_router)
    return app


app = create_app()
