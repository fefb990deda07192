from collections.abc import Awaitable, Callable
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import sentry_sdk
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from loggers import get_logger
from src.core.errors.handlers import format_error_response

logger = get_logger(__name__)
timing_logger = get_logger("src.request.timing", plain_format=True)
UNEXPECTED_ERROR_DETAIL = "Unexpected error"

# Auth and internal responses carry session data and must never be cached
NO_STORE_PREFIXES = ("/v1/auth", "/internal/")


def register_middlewares(app: FastAPI) -> None:
    """Registers all custom middlewares in proper order"""

    @app.middleware("http")
    async def security_headers_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Content-Security-Policy", "frame-ancestors 'none'")
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.middleware("http")
    async def request_timing_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        if process_time < 0.5:
            level = timing_logger.info
            category = "[FAST]"
        elif process_time < 2:
            level = timing_logger.warning
            category = "[MODERATE]"
        else:
            level = timing_logger.warning
            category = "[SLOW]"

        # Path only; query strings may carry authorization codes
        level(
            "%s %s %s |%.3fs|%s",
            category,
            request.method,
            request.url.path,
            process_time,
            response.status_code,
        )
        return response

    @app.middleware("http")
    async def database_error_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except SQLAlchemyError as exc:
            logger.error(
                "Database error at %s: %s", request.url.path, type(exc).__name__
            )
            sentry_sdk.capture_exception(exc)
            return JSONResponse(
                status_code=500,
                content=format_error_response(
                    "Infrastructure error", "Database error. Please try again later."
                ),
            )

    @app.middleware("http")
    async def unexpected_error_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unexpected error at %s: %s",
                request.url.path,
                type(exc).__name__,
                exc_info=True,
            )
            sentry_sdk.capture_exception(exc)
            return JSONResponse(
                status_code=500,
                content=format_error_response("Internal error", UNEXPECTED_ERROR_DETAIL),
            )
