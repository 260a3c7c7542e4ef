from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from citeguard.api.router import api_router
from citeguard.core.config import get_settings
from citeguard.core.telemetry import (
    TelemetryRuntime,
    record_response_status,
    request_span,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from citeguard.domain.errors import CiteGuardError, ExternalServiceError, NotFoundError
from citeguard.services.repository import RepositoryUnavailableError, get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(_telemetry_runtime)
        await get_repository().close()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    with request_span(request.method, request.url.path) as span:
        response = await call_next(request)
        record_response_status(span, response.status_code)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.exception_handler(RepositoryUnavailableError)
async def repository_unavailable_handler(_: Request, exc: RepositoryUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


@app.exception_handler(CiteGuardError)
async def citeguard_error_handler(request: Request, exc: CiteGuardError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ExternalServiceError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    logger.warning(
        "unhandled domain error path=%s error_type=%s status=%s",
        request.url.path,
        exc.__class__.__name__,
        status_code,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


app.include_router(api_router)
