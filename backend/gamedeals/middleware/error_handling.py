"""
API Error Handling for Game Deals
Every error leaves the API as ``{"error": ..., "error_code": ...}``
"""

import logging
import traceback
import uuid
from enum import Enum
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from gamedeals.utils.logging_security import sanitize_error_message_for_log, sanitize_for_log

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "unauthorized."
INTERNAL_ERROR_MESSAGE = "An unknown internal error occurred"


class ErrorCode(str, Enum):
    """Machine readable codes for errors the client is expected to act on"""

    MUST_RESET_PASSWORD = "must_reset_password"
    OLD_PASSWORD_NOT_ALLOWED = "old_password_not_allowed"
    NOT_MEET_PASSWORD_REQUIREMENTS = "not_meet_password_requirements"


class APIErrorResponse(BaseModel):
    """Standardized API error response"""

    error: str
    error_code: Optional[ErrorCode] = None


class EndpointError(Exception):
    """
    An error to show to the API client.

    Attributes:
        http_status: Response status code
        error: Message placed in the response body
        error_code: Optional machine readable code
    """

    def __init__(self, http_status: int, error: str, error_code: Optional[ErrorCode] = None):
        self.http_status = http_status
        self.error = error
        self.error_code = error_code
        super().__init__(error)

    @classmethod
    def unauthorized(cls) -> "EndpointError":
        return cls(status.HTTP_403_FORBIDDEN, UNAUTHORIZED_MESSAGE)

    @classmethod
    def unauthenticated(cls) -> "EndpointError":
        return cls(status.HTTP_401_UNAUTHORIZED, UNAUTHORIZED_MESSAGE)

    @classmethod
    def internal(cls) -> "EndpointError":
        return cls(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)

    def to_response(self) -> JSONResponse:
        return error_response(self.http_status, self.error, self.error_code)


def error_response(http_status: int, error: str, error_code: Optional[ErrorCode] = None) -> JSONResponse:
    body = APIErrorResponse(error=error, error_code=error_code)
    return JSONResponse(status_code=http_status, content=body.model_dump(mode="json", exclude_none=True))


def unauthorized_response() -> JSONResponse:
    """The single response shape for every authorization denial"""
    return error_response(status.HTTP_403_FORBIDDEN, UNAUTHORIZED_MESSAGE)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns unexpected exceptions into the generic 500 body"""

    def __init__(self, app, include_debug_info: bool = False):
        super().__init__(app)
        self.include_debug_info = include_debug_info

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except EndpointError as exc:
            return exc.to_response()
        except Exception as exc:
            error_id = str(uuid.uuid4())[:8]
            logger.error(
                f"Unexpected error ({error_id}) on {request.method} "
                f"{sanitize_for_log(request.url.path, allow_special=True)}: "
                f"{sanitize_error_message_for_log(exc)}",
                extra={
                    "error_id": error_id,
                    "exception_type": type(exc).__name__,
                    "traceback": traceback.format_exc(),
                },
            )
            if self.include_debug_info:
                return error_response(
                    status.HTTP_500_INTERNAL_SERVER_ERROR, f"{INTERNAL_ERROR_MESSAGE} ({error_id}: {exc})"
                )
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)


async def endpoint_error_handler(request: Request, exc: EndpointError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"HTTP {exc.http_status} error: {sanitize_error_message_for_log(exc.error)}")
    return exc.to_response()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework raised HTTP errors (404 route, 405 method) in the API error shape"""
    return error_response(exc.status_code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, f"invalid request: {exc.errors()}")


def install_error_handlers(app: FastAPI, include_debug_info: bool = False) -> None:
    app.add_middleware(ErrorHandlingMiddleware, include_debug_info=include_debug_info)
    app.add_exception_handler(EndpointError, endpoint_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
