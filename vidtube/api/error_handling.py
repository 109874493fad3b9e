from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from vidtube.api.schemas import ErrorBody
from vidtube.logging import get_logger
from vidtube.service.errors import ErrorKind, ServiceError
from vidtube.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_KIND = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
}


def _error_response(
    status_code: int,
    message: str,
    errors: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    fallback = ErrorKind.VALIDATION if status_code < 500 else ErrorKind.INTERNAL
    error_code = code or _STATUS_TO_KIND.get(status_code, fallback).value
    body = ErrorBody(status_code=status_code, message=message, code=error_code, errors=errors)
    return JSONResponse(
        status_code=status_code, content=body.model_dump(by_alias=True, mode="json")
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain, storage and framework errors as the error envelope."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code=ErrorKind.CONFLICT.value)

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(
            exc.status_code, exc.message, exc.detail or None, code=exc.error_code
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            errors=errors,
        )
        return _error_response(400, "invalid request", errors, code=ErrorKind.VALIDATION.value)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "internal server error", code=ErrorKind.INTERNAL.value)
