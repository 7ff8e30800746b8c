"""Custom exceptions and handlers for consistent error responses.

Every ledger error carries the ledger scope (theater, product) and, where
there is one, the offending field, so the admin UI can render a useful
message.  Storage internals (SQL, driver messages) are logged but never
returned to the client.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CanteenStockException(Exception):
    """Base exception for stock ledger errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


def _scope_details(
    theater_id: str | None,
    product_id: str | None,
    field: str | None = None,
    **extra,
) -> dict:
    details = {}
    if theater_id is not None:
        details["theaterId"] = theater_id
    if product_id is not None:
        details["productId"] = product_id
    if field is not None:
        details["field"] = field
    details.update({k: v for k, v in extra.items() if v is not None})
    return details


class StockValidationError(CanteenStockException):
    """Malformed or invariant-violating input. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        theater_id: str | None = None,
        product_id: str | None = None,
    ):
        self.field = field
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=_scope_details(theater_id, product_id, field),
        )


class StockNotFoundError(CanteenStockException):
    """Unknown entry, or an entry outside the caller's ledger scope."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        *,
        theater_id: str | None = None,
        product_id: str | None = None,
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="STOCK_NOT_FOUND",
            details=_scope_details(theater_id, product_id),
        )


class StockConflictError(CanteenStockException):
    """Mutation would break an invariant, or lost an optimistic-lock race.

    The caller may retry with fresh data.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        theater_id: str | None = None,
        product_id: str | None = None,
        available: int | None = None,
    ):
        self.field = field
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="STOCK_CONFLICT",
            details=_scope_details(theater_id, product_id, field, available=available),
        )


class StockLockTimeoutError(CanteenStockException):
    """The per-ledger lock was not acquired in time. The caller may retry."""

    def __init__(self, theater_id: str, product_id: str, timeout: float):
        super().__init__(
            message=(
                f"Stock ledger is busy; lock not acquired within {timeout:g}s. "
                "Please try again."
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="LEDGER_BUSY",
            details=_scope_details(theater_id, product_id),
        )


class CorruptLedgerError(CanteenStockException):
    """A stored entry is malformed; the balance cannot be stated."""

    def __init__(
        self,
        entry_id: str | None,
        field: str,
        problem: str,
        *,
        theater_id: str | None = None,
        product_id: str | None = None,
    ):
        self.entry_id = entry_id
        self.field = field
        super().__init__(
            message=f"Stock entry {entry_id} is corrupt: {problem}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="LEDGER_CORRUPT",
            details=_scope_details(theater_id, product_id, field, entryId=entry_id),
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def canteen_stock_exception_handler(
    request: Request,
    exc: CanteenStockException,
) -> JSONResponse:
    """Handle ledger exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Stock exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    # Log non-4xx errors
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    response = create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors as client errors (400)."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    # Format validation errors for better readability
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (CHECK constraints, unique scope)."""
    logger.error(
        f"Database integrity error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "conservation" in error_msg.lower() or "check" in error_msg.lower():
        message = "Stock quantities would become inconsistent"
        error_code = "STOCK_CONFLICT"
    elif "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_409_CONFLICT,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        f"Database operational error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    # Return generic error to client (don't expose internal details)
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(CanteenStockException, canteen_stock_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
