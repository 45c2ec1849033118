"""
Error taxonomy of the marketplace core and the FastAPI handlers that render it.

Every failure the services raise is a MarketError subclass carrying its HTTP
status and a stable machine code; the handlers below turn them into a uniform
JSON body. Anything else is an internal error: logged with traceback,
surfaced generically.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MarketError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


class ValidationError(MarketError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Invalid request"


class UnauthenticatedError(MarketError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "Authentication required"


class ForbiddenError(MarketError):
    # The message never explains why access was denied.
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "No access"

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        super().__init__(self.default_message, field=field)


class NotFoundError(MarketError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class ConflictError(MarketError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Conflict"


class UpstreamError(MarketError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_unavailable"
    default_message = "Upstream service unavailable"


def error_response(status_code: int, code: str, message: str, field: str | None = None) -> JSONResponse:
    error: dict = {"code": code, "message": message}
    if field:
        error["field"] = field
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def market_error_handler(request: Request, exc: MarketError) -> JSONResponse:
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        extra={"path": request.url.path, "status_code": exc.status_code, "reason": exc.code},
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
    response = error_response(exc.status_code, exc.code, exc.message, exc.field)
    if headers:
        response.headers.update(headers)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    message = "Invalid request"
    if errors:
        loc = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or None
        message = errors[0].get("msg", message)
    return error_response(status.HTTP_400_BAD_REQUEST, ValidationError.code, message, field)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={"path": request.url.path, "method": request.method, "error": type(exc).__name__},
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, MarketError.code, MarketError.default_message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
