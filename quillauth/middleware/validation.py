"""Validation middleware for request payload size and JSON structure."""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
import orjson

from .error_handler import error_response

log = structlog.get_logger()


class ValidationMiddleware(BaseHTTPMiddleware):
    """Rejects oversized bodies and malformed JSON before routing."""

    def __init__(self, app, max_size: int):
        super().__init__(app)
        self.max_size = max_size

    def _too_large(self, request: Request, size: int):
        log.warning("payload.too_large", size=size, max_size=self.max_size)
        return error_response(
            request,
            413,
            "payload_too_large",
            f"Request payload exceeds maximum size of {self.max_size} bytes",
            {"max_size": self.max_size},
        )

    async def dispatch(self, request: Request, call_next):
        if request.method in ["POST", "PUT", "PATCH"]:
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > self.max_size:
                return self._too_large(request, int(content_length))

            if request.headers.get("content-type", "").startswith("application/json"):
                body = await request.body()
                if len(body) > self.max_size:
                    return self._too_large(request, len(body))

                if body:
                    try:
                        orjson.loads(body)
                    except orjson.JSONDecodeError as e:
                        log.warning("invalid.json", error=str(e))
                        return error_response(request, 400, "validation_error", "Request body is not valid JSON")

        return await call_next(request)
