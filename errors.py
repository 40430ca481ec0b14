"""Error taxonomy and the single boundary that turns exceptions into envelopes.

Handlers log the original failure server side, then answer with the
sanitized ``{success: false, ...}`` envelope from :mod:`responses`.
"""

from typing import Dict, List, Optional

import pydantic
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from log import get_logger
from responses import send_error

logger = get_logger(__name__)


class APIError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(APIError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class Conflict(APIError):
    status_code = 400
    default_message = "Duplicate field value entered"


class Unauthorized(APIError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(APIError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(APIError):
    status_code = 404
    default_message = "Resource not found"


class ExternalServiceError(APIError):
    status_code = 500
    default_message = "External service error"


class InternalError(APIError):
    status_code = 500


def field_errors(errors) -> List[Dict[str, str]]:
    """Flatten pydantic/FastAPI error dicts into ``[{field, message}]``."""
    result = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        result.append({"field": ".".join(loc), "message": message})
    return result


def validation_failed(exc: pydantic.ValidationError) -> ValidationError:
    errors = field_errors(exc.errors())
    message = ", ".join(e["message"] for e in errors) or None
    return ValidationError(message, errors)


def register_error_handlers(app: FastAPI, expose_details: bool) -> None:
    def _path(request: Request) -> str:
        return request.url.path

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        if exc.status_code >= 500:
            logger.error("request failed", path=_path(request), error=exc.message, kind=type(exc).__name__)
        else:
            logger.info("request rejected", path=_path(request), status=exc.status_code, error=exc.message)
        message = exc.message
        if exc.status_code >= 500 and not expose_details and not isinstance(exc, ExternalServiceError):
            message = InternalError.default_message
        errors = exc.errors if isinstance(exc, ValidationError) else None
        return send_error(message, exc.status_code, exc.message if expose_details else message, _path(request), errors)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = field_errors(exc.errors())
        message = ", ".join(e["message"] for e in errors) or ValidationError.default_message
        logger.info("request rejected", path=_path(request), status=400, error=message)
        return send_error(message, 400, message, _path(request), errors)

    @app.exception_handler(pydantic.ValidationError)
    async def model_validation_handler(request: Request, exc: pydantic.ValidationError):
        return await api_error_handler(request, validation_failed(exc))

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        logger.info("duplicate key", path=_path(request), details=exc.details)
        return await api_error_handler(request, Conflict())

    @app.exception_handler(InvalidId)
    async def invalid_id_handler(request: Request, exc: InvalidId):
        return await api_error_handler(request, NotFound())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = str(exc.detail)
        error = message
        if exc.status_code == 404 and message == "Not Found":
            message = "Route not found"
            error = f"Cannot {request.method} {_path(request)}"
        return send_error(message, exc.status_code, error, _path(request))

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        logger.exception("unhandled error", path=_path(request), method=request.method)
        message = str(exc) if expose_details and str(exc) else InternalError.default_message
        return send_error(message, 500, message, _path(request))
