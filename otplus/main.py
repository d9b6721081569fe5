import asyncio
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from otplus.db import init_db
from otplus.errors import ApiError, error_response
from otplus.logging_utils import setup_json_logging
from otplus.routers import analysis, overrides
from otplus.services.offload import MODE_SYNC, OffloadAdapter
from otplus.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level.upper())
logger = logging.getLogger("otplus.request")
offload_logger = logging.getLogger("otplus.offload")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, "HTTP_ERROR"),
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(analysis.router)
app.include_router(overrides.router)


@app.on_event("startup")
async def initialize_database() -> None:
    await asyncio.to_thread(init_db)


@app.on_event("startup")
async def start_offload_adapter() -> None:
    if getattr(app.state, "offload_adapter", None) is not None:
        return
    adapter = OffloadAdapter.from_settings(settings)
    mode = await asyncio.to_thread(adapter.start)
    app.state.offload_adapter = adapter
    offload_logger.info(
        "offload_adapter_ready",
        extra={
            "mode": mode,
            "min_entries": settings.offload_min_entries,
        },
    )


@app.on_event("shutdown")
async def stop_offload_adapter() -> None:
    adapter: OffloadAdapter | None = getattr(app.state, "offload_adapter", None)
    if adapter is not None:
        await asyncio.to_thread(adapter.terminate)
    app.state.offload_adapter = None


@app.get("/health")
def health() -> dict[str, Any]:
    adapter: OffloadAdapter | None = getattr(app.state, "offload_adapter", None)
    return {
        "status": "ok",
        "offload": {
            "enabled": settings.offload_enabled,
            "mode": adapter.mode if adapter is not None else MODE_SYNC,
        },
    }
