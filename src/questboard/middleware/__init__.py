"""Middleware registration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from questboard.config import Settings
from questboard.middleware.error_handler import setup_error_handlers
from questboard.middleware.logging import setup_logging
from questboard.middleware.rate_limit import RateLimitMiddleware
from questboard.middleware.request_id import RequestIdMiddleware

# Headers the quest UI reads: request correlation, rate limit state, retry hints.
_EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register error handlers and middleware.

    Starlette runs middleware in reverse-add order (last added = outermost).
    CORS stays outermost so 429 responses carry its headers too; the request
    id wraps the rate limiter so rejected requests are still logged with one.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=_EXPOSED_HEADERS,
    )
