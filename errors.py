"""
Error types and the response envelope.

Every response body is ``{"success": bool, "data"|"message": ...}``.
Handlers return ``ok(...)``; failures raise ``ApiError`` (or FastAPI's
``HTTPException``) and are rendered by the handlers registered here.
"""
import logging
import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class GatewayError(Exception):
    """A payment provider call failed or returned an unusable answer."""


def ok(data=None, message: str | None = None):
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def paginate(page: int, limit: int, total: int):
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def error_response(status_code: int, message: str, errors=None, headers=None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def api_error_handler(request: Request, exc: ApiError):
    return error_response(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error_response(400, "Validation failed", errors=errors)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, "Too many requests, please try again later.")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal Server Error")


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
