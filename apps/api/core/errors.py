"""RFC 7807 Problem Details error handling.

Provides centralized exception handling and custom exception classes. All
errors return a consistent JSON format:

    {
        "type": "about:blank",
        "title": "Unauthorized",
        "status": 401,
        "detail": "Session expired",
        "instance": "/api/v1/transactions"
    }

Engine exceptions (format errors, store outages, reconciliation
inconsistencies) are mapped here so routers can let them propagate.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from packages.ingestion_engine.exceptions import (
    AmbiguousAmountColumns,
    FingerprintCollision,
    ReconciliationInconsistency,
    StoreUnavailable,
    UnrecognizedFormat,
)

logger = structlog.get_logger()


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str, status_code: int = 500, error_type: str = "about:blank"):
        self.detail = detail
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(detail)


class NotFoundError(AppError):
    """Resource not found."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail=detail, status_code=404)


class ValidationError(AppError):
    """Request validation failed."""

    def __init__(self, detail: str = "Validation failed"):
        super().__init__(detail=detail, status_code=422)


class AuthenticationError(AppError):
    """Authentication failed."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(detail=detail, status_code=401)


class InvalidCredentials(AuthenticationError):
    def __init__(self, detail: str = "Invalid username or password"):
        super().__init__(detail=detail)


class SessionExpired(AuthenticationError):
    def __init__(self, detail: str = "Session expired"):
        super().__init__(detail=detail)


class SessionInvalid(AuthenticationError):
    def __init__(self, detail: str = "Session is not valid"):
        super().__init__(detail=detail)


class PayloadTooLargeError(AppError):
    def __init__(self, detail: str = "Upload too large"):
        super().__init__(detail=detail, status_code=413)


class SessionStoreUnavailable(AppError):
    """Session backend unreachable. Retryable, like StoreUnavailable."""

    def __init__(self, detail: str = "Session store unavailable, retry later"):
        super().__init__(detail=detail, status_code=503, error_type="session-store-unavailable")


def _build_problem_detail(
    status: int,
    title: str,
    detail: str,
    error_type: str = "about:blank",
    instance: str = "",
    request_id: str = "",
) -> dict:
    """Build RFC 7807 Problem Details response body."""
    body = {
        "type": error_type,
        "title": title,
        "status": status,
        "detail": detail,
    }
    if instance:
        body["instance"] = instance
    if request_id:
        body["request_id"] = request_id
    return body


# HTTP status code to title mapping
_STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    413: "Content Too Large",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}

STORE_RETRY_AFTER_SECONDS = 5


def _problem_response(
    request: Request,
    status: int,
    detail: str,
    error_type: str = "about:blank",
    headers: dict | None = None,
) -> JSONResponse:
    body = _build_problem_detail(
        status=status,
        title=_STATUS_TITLES.get(status, "Error"),
        detail=detail,
        error_type=error_type,
        instance=str(request.url.path),
        request_id=getattr(request.state, "request_id", ""),
    )
    return JSONResponse(status_code=status, content=body, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        headers = None
        if exc.status_code == 503:
            logger.warning("backend_unavailable", error_type=exc.error_type, path=str(request.url.path))
            headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}
        return _problem_response(request, exc.status_code, exc.detail, exc.error_type, headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return _problem_response(request, exc.status_code, detail)

    @app.exception_handler(UnrecognizedFormat)
    async def unrecognized_format_handler(request: Request, exc: UnrecognizedFormat) -> JSONResponse:
        return _problem_response(request, 422, str(exc), "unrecognized-format")

    @app.exception_handler(AmbiguousAmountColumns)
    async def ambiguous_amount_handler(request: Request, exc: AmbiguousAmountColumns) -> JSONResponse:
        return _problem_response(request, 422, str(exc), "ambiguous-amount-columns")

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.warning("store_unavailable", error=str(exc), path=str(request.url.path))
        return _problem_response(
            request,
            503,
            "Transaction store unavailable, retry later",
            "store-unavailable",
            headers={"Retry-After": str(STORE_RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(ReconciliationInconsistency)
    async def inconsistency_handler(request: Request, exc: ReconciliationInconsistency) -> JSONResponse:
        if isinstance(exc, FingerprintCollision):
            logger.critical("fingerprint_collision", error=str(exc))
            return _problem_response(
                request, 500, "An unexpected error occurred", "fingerprint-collision"
            )
        logger.error("reconciliation_inconsistency", error=str(exc))
        return _problem_response(request, 409, str(exc), "reconciliation-inconsistency")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=str(request.url.path))
        return _problem_response(request, 500, "An unexpected error occurred")
