from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from zariya.services import errors as domain_errors

logger = logging.getLogger(__name__)

# Most specific class wins; anything unlisted is a 400.
_CORE_ERROR_STATUS: dict[type[domain_errors.CoreError], int] = {
    domain_errors.NotFound: 404,
    domain_errors.InvalidAmount: 400,
    domain_errors.InvalidTransition: 409,
    domain_errors.AlreadyReviewed: 409,
    domain_errors.InvalidLoanState: 409,
    domain_errors.OverPayment: 409,
    domain_errors.ConcurrentModification: 409,
    domain_errors.DuplicateRecord: 409,
    domain_errors.StoreUnavailable: 503,
    domain_errors.SequenceOverflow: 500,
}

_HTTP_CODES = {
    400: "bad_request",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    422: "unprocessable_entity",
    429: "rate_limited",
}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    """Error responses share the success envelope with ``data`` left empty."""
    payload = {"code": code, "message": message, "data": None, "details": _as_details(details)}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    if isinstance(exc.detail, str):
        return error_response(exc.status_code, code, exc.detail or _phrase(exc.status_code))
    return error_response(exc.status_code, code, _phrase(exc.status_code), exc.detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        # body/query/path prefixes are noise for the caller
        field = ".".join(str(part) for part in first.get("loc") or [] if part not in {"body", "query", "path"})
        reason = first.get("msg") or message
        message = f"{field}: {reason}" if field else str(reason)
    return error_response(422, "validation_error", message, {"errors": errors})


def _core_error_status(exc: domain_errors.CoreError) -> int:
    for cls in type(exc).__mro__:
        status_code = _CORE_ERROR_STATUS.get(cls)
        if status_code is not None:
            return status_code
    return 400


async def core_error_handler(request: Request, exc: domain_errors.CoreError) -> JSONResponse:
    status_code = _core_error_status(exc)
    if isinstance(exc, domain_errors.StoreUnavailable):
        logger.error("Store unavailable", extra={"operation": exc.operation, "path": request.url.path})
        return error_response(status_code, exc.code, "The service is temporarily unavailable, please try again later")
    if status_code >= 500:
        logger.error("Core failure", extra={"code": exc.code, "details": exc.details, "path": request.url.path})
        return error_response(status_code, exc.code, "Internal server error")
    if status_code == 409:
        logger.info("Request conflict", extra={"code": exc.code, "path": request.url.path})
    return error_response(status_code, exc.code, exc.message, exc.details)


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = error_response(429, "rate_limited", _phrase(429), getattr(exc, "detail", None))
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(domain_errors.CoreError, core_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
