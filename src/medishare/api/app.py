"""FastAPI application factory."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from medishare.api.routes import health, share
from medishare.errors import ShareValidationError, StorageError
from medishare.logging import configure_from_settings, new_correlation_id
from medishare.settings import Settings
from medishare.sharing.components import build_components

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

__all__ = ["create_app"]

logger = logging.getLogger(__name__)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    410: "TOKEN_EXPIRED",
    503: "STORAGE_UNAVAILABLE",
}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Inject correlation_id and record request metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cid = request.headers.get("x-correlation-id") or new_correlation_id()
        request.state.request_id = cid

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["x-correlation-id"] = cid
        response.headers["x-request-duration-ms"] = f"{duration * 1000:.1f}"
        # Share URLs carry the capability in the path; keep them out of caches
        if request.url.path.startswith("/share/"):
            response.headers["cache-control"] = "no-store"
            response.headers["referrer-policy"] = "no-referrer"

        health.record_request(response.status_code)
        return response


def _resolve_request_id(request: Request) -> str:
    state_request_id = getattr(request.state, "request_id", "")
    if state_request_id:
        return state_request_id
    header_request_id = request.headers.get("x-correlation-id", "")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = new_correlation_id()
    request.state.request_id = generated
    return generated


def _error_payload(error_code: str, message: str, request_id: str, *, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "request_id": request_id,
    }
    if details is not None:
        payload["details"] = details
    return payload


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    request_id = _resolve_request_id(request)
    status_code = exc.status_code

    if status_code in _ERROR_CODE_BY_STATUS:
        error_code = _ERROR_CODE_BY_STATUS[status_code]
    elif 400 <= status_code < 500:
        error_code = "INVALID_REQUEST"
    else:
        error_code = "INTERNAL_ERROR"

    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(error_code, message, request_id),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _resolve_request_id(request)
    return JSONResponse(
        status_code=422,
        content=_error_payload(
            "INVALID_REQUEST",
            "Request validation failed",
            request_id,
            details=exc.errors(),
        ),
    )


async def _share_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _resolve_request_id(request)
    return JSONResponse(
        status_code=400,
        content=_error_payload("INVALID_REQUEST", str(exc), request_id),
    )


async def _storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _resolve_request_id(request)
    logger.error("Share storage failure: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content=_error_payload("STORAGE_UNAVAILABLE", "Share storage unavailable, retry", request_id),
        headers={"retry-after": "1"},
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _resolve_request_id(request)
    logger.exception("Unhandled application exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_payload("INTERNAL_ERROR", "Internal server error", request_id),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = Settings()
    configure_from_settings(settings)

    app.state.settings = settings
    app.state.share = build_components(settings)

    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="MediShare",
        version="0.1.0",
        description="Short-lived clinician share tokens for patient medication records.",
        lifespan=lifespan,
    )
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(ShareValidationError, _share_validation_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
    app.add_middleware(ObservabilityMiddleware)
    app.include_router(health.router, tags=["health"])
    app.include_router(share.router, tags=["share"])
    return app


app = create_app()
