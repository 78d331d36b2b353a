"""Error taxonomy and structured error response handlers.

Every error raised by the distribution core derives from ``DistributionError``
and carries the HTTP status it surfaces as.  Handlers render all of them as:

    {
      "success": false,
      "error": "Human-readable explanation of what went wrong.",
      "code": "DESCRIPTIVE_CODE",
      "request_id": "abc123..."
    }
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class DistributionError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(DistributionError):
    """A required secret or integration credential is missing."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(DistributionError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationError(DistributionError):
    status_code = 400
    code = "BAD_REQUEST"


class InvalidTokenError(DistributionError):
    status_code = 403
    code = "INVALID_TOKEN"


class ExpiredTokenError(DistributionError):
    status_code = 410
    code = "TOKEN_EXPIRED"


class UpstreamProviderError(DistributionError):
    """The funds mover or the notification provider answered with a failure."""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(self, provider: str, status: int, detail: str):
        self.provider = provider
        self.status = status
        self.detail = detail
        super().__init__(f"{provider} {status}: {detail}")


class UnexpectedError(DistributionError):
    code = "INTERNAL_ERROR"


_STATUS_CODE_MAP: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    410: "GONE",
    422: "VALIDATION_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def error_body(message: str, code: str, request_id: str | None = None) -> dict:
    return {"success": False, "error": message, "code": code, "request_id": request_id}


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DistributionError)
    async def distribution_error_handler(
        request: Request, exc: DistributionError
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.error("%s (request_id=%s): %s", exc.code, request_id, exc.message)
        else:
            logger.warning("%s (request_id=%s): %s", exc.code, request_id, exc.message)

        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code, request_id),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                str(exc.detail), _STATUS_CODE_MAP.get(exc.status_code, "ERROR"), request_id
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)

        fields = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            fields.append({"field": loc, "message": err["msg"], "type": err["type"]})

        body = error_body(
            f"{len(fields)} validation error(s) in your request.", "BAD_REQUEST", request_id
        )
        body["details"] = fields
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        logger.exception("Unhandled error (request_id=%s)", request_id)

        return JSONResponse(
            status_code=500,
            content=error_body(
                "An unexpected error occurred. "
                "If this persists, contact support with the request_id.",
                "INTERNAL_ERROR",
                request_id,
            ),
        )
