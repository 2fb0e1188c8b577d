"""
Error taxonomy for the lending API.

Services raise these; the handlers registered by ``register_exception_handlers``
turn them into ``{"message": ...}`` JSON responses with the matching status.
"""
import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class LendingError(Exception):
    """Base exception for all lending errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidCredentials(LendingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class Unauthenticated(LendingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class Forbidden(LendingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(LendingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InvalidTransition(LendingError):
    """Raised when a loan is not in the state an action requires."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Loan is not in a valid state for this action"


class StoreUnavailable(LendingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"


STORE_ERRORS = (
    OperationalError,
    PoolTimeoutError,
    asyncio.TimeoutError,
    RedisConnectionError,
    RedisTimeoutError,
)


def _error_response(exc: LendingError) -> JSONResponse:
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message},
        headers=headers,
    )


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    if isinstance(exc, StoreUnavailable):
        logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc.message}")
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = ValidationError.default_message
    return _error_response(ValidationError(message))


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Backing store failure during {request.method} {request.url.path}: "
        f"{type(exc).__name__}"
    )
    return _error_response(StoreUnavailable())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error during {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the lending error handlers to an application"""
    app.add_exception_handler(LendingError, lending_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    for error_type in STORE_ERRORS:
        app.add_exception_handler(error_type, store_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
