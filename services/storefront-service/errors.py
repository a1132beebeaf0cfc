"""Domain errors and their HTTP rendering."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UnauthorizedError(StoreError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(StoreError):
    status_code = 403
    code = "forbidden"


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class ValidationError(StoreError):
    status_code = 400
    code = "validation_error"


class ConflictError(StoreError):
    status_code = 409
    code = "conflict"


class ExternalServiceError(StoreError):
    """A call to a third-party system failed or returned an error."""

    status_code = 502
    code = "external_service_failure"


class SignatureMismatchError(StoreError):
    """Payment signature did not match; the order is left untouched."""

    status_code = 400
    code = "signature_mismatch"


def error_response(status_code: int, code: str, message: str, headers: dict = None) -> JSONResponse:
    """Build the structured error body shared by every failure path."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
        headers=headers,
    )


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request failed", extra={
        "path": request.url.path,
        "method": request.method,
        "status_code": exc.status_code,
        "error_code": exc.code,
        "error": exc.message
    })
    return error_response(exc.status_code, exc.code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    response = error_response(422, "validation_error", message)
    logger.info("Request validation failed", extra={
        "path": request.url.path,
        "method": request.method,
        "errors": errors
    })
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={
        "path": request.url.path,
        "method": request.method
    })
    return error_response(500, "internal_error", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach the error handlers to the application."""
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
