"""Global error handlers and the domain-error to HTTP mapping."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatline.api.request_id import get_request_id
from chatline.domain.common.errors import (
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)
from chatline.infra.rate_limit import RateLimitExceeded

# Errors a route converts into an HTTP response; anything else is a bug and propagates.
HANDLED_ERRORS = (DomainError, RateLimitExceeded)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UpstreamFailure, status.HTTP_502_BAD_GATEWAY),
    (RateLimitExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
)


def map_domain_error(exc: Exception) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(code, detail=getattr(exc, "reason", str(exc)))
    return HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc))


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id()}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": jsonable_encoder(exc.errors()), "request_id": get_request_id()}
        return JSONResponse(status_code=422, content=payload)
