"""Middleware registration."""

from fastapi import FastAPI

from vpay.config import Settings
from vpay.middleware.error_handler import setup_error_handlers
from vpay.middleware.logging import setup_logging
from vpay.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and the request-id middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
