"""Structured error responses for service, validation and unexpected errors."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from ..errors import ServiceError
from .correlation import get_correlation_id

log = structlog.get_logger()


def error_response(request: Request, status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    """
    Build the error envelope:

    {"error": {"code", "message", "details"?}, "correlation_id", "path"}
    """
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "correlation_id": get_correlation_id(),
            "path": str(request.url.path),
        },
        headers=headers,
    )


async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("service.error", error_code=exc.error_code, path=request.url.path)
        # Internal details never leave the process
        return error_response(request, exc.status_code, exc.error_code, exc.default_message)

    log.info("service.rejected", status_code=exc.status_code, error_code=exc.error_code, path=request.url.path)
    return error_response(request, exc.status_code, exc.error_code, exc.message, exc.detail)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "reason": err.get("msg", "")}
        for err in exc.errors()
    ]
    log.info("request.validation_failed", path=request.url.path, problems=len(problems))
    return error_response(request, 400, "validation_error", "Request validation failed", {"fields": problems})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "unhandled.exception",
        error=str(exc),
        error_type=exc.__class__.__name__,
        path=request.url.path,
        exc_info=True,
    )
    return error_response(request, 500, "internal_error", "Unexpected server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
