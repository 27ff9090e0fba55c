from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from amora.api.schemas import ErrorResponse
from amora.api.validation import Invalid, format_errors
from amora.config import get_settings
from amora.logging import get_correlation_id, get_logger, sanitize_error_message
from amora.service.errors import ServiceError
from amora.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    404: "not_found",
    405: "method_not_allowed",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    if status_code in _STATUS_TO_CODE:
        return _STATUS_TO_CODE[status_code]
    return "server_error" if status_code >= 500 else "validation_error"


def _error_response(
    status_code: int,
    message: str,
    details: Any = None,
    code: Optional[str] = None,
    *,
    error: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(
        message=message,
        code=code or _error_code_for_status(status_code),
        details=details or None,
        error=error,
    )
    correlation_id = get_correlation_id()
    if correlation_id:
        body.request_id = correlation_id
    return JSONResponse(
        status_code=status_code, content=body.model_dump(exclude_none=True)
    )


def _log_error(event: str, request: Request, status_code: int, **fields: Any) -> None:
    log_fn = logger.error if status_code >= 500 else logger.warning
    log_fn(
        event,
        path=request.url.path,
        method=request.method,
        status_code=status_code,
        **fields,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain, storage and framework errors into the error body."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        _log_error(
            "service_error",
            request,
            exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        _log_error("constraint_violation", request, 400, message=exc.message, detail=exc.detail)
        return _error_response(
            400, "User already exists", exc.detail, code="duplicate_identity"
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        invalid = Invalid(format_errors(exc))
        _log_error("request_validation_failed", request, 400, errors=invalid.errors)
        return _error_response(400, invalid.message, {"errors": invalid.errors})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            _log_error("route_not_found", request, 404)
            return _error_response(404, "Not Found")
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        _log_error("http_error", request, exc.status_code, message=message)
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        error = None
        if get_settings().is_development:
            error = sanitize_error_message(str(exc))
        return _error_response(500, "internal server error", code="server_error", error=error)
