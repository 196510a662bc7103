from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ValidationError(AppError):
    """Malformed or missing parameter; raised before any credit is checked or charged."""

    def __init__(self, message: str = "Invalid parameters", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidOperationError(AppError):
    def __init__(self, operation: str | None, valid_operations: list[str]):
        super().__init__(
            "Invalid operation",
            code="INVALID_OPERATION",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"operation": operation, "validOperations": valid_operations},
        )


class PayloadTooLargeError(AppError):
    def __init__(self, message: str = "Upload too large", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="PAYLOAD_TOO_LARGE",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details=details,
        )


class InsufficientCreditsError(AppError):
    def __init__(self, required: int, available: int, operation: str | None = None):
        details: dict[str, Any] = {"required": required, "available": available}
        if operation:
            details["operation"] = operation
        super().__init__(
            "Insufficient credits",
            code="INSUFFICIENT_CREDITS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


class TransformError(AppError):
    """The document could not be transformed.

    Client-caused failures (unreadable, encrypted, missing page or field) are 422;
    anything else is a 500.
    """

    def __init__(self, message: str, client_error: bool = True, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="TRANSFORM_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY if client_error else status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class LedgerInconsistencyError(AppError):
    def __init__(self, message: str = "Credit settlement failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="LEDGER_INCONSISTENCY",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class OperationTimeoutError(AppError):
    def __init__(self, message: str = "Operation timed out, retry later", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="TIMEOUT",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            details=details,
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body: dict[str, Any] = {
        "error": exc.message,
        "code": exc.code,
        **exc.details,
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": "Validation error",
        "code": "VALIDATION_ERROR",
        "errors": jsonable_encoder(exc.errors()),
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": "Internal server error",
        "code": "INTERNAL_ERROR",
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
