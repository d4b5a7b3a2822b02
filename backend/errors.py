"""Custom exceptions and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AnalyticsError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class CacheSerializationError(AnalyticsError):
    """A payload could not be deep-copied into or out of the cache."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class DataSourceError(AnalyticsError):
    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class UnknownReportError(AnalyticsError):
    def __init__(self, report: str, supported):
        super().__init__(
            f"Unknown report: {report}. Supported: {sorted(supported)}",
            status_code=404,
        )


class AuthenticationError(AnalyticsError):
    def __init__(self, message: str = "Missing user role. Pass X-User-Role header."):
        super().__init__(message, status_code=401)


class ForbiddenError(AnalyticsError):
    def __init__(self, message: str):
        super().__init__(message, status_code=403)


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(AnalyticsError)
    async def handle_analytics_error(_request: Request, exc: AnalyticsError):
        if exc.status_code >= 500:
            logger.error("Analytics error (%d): %s", exc.status_code, exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
