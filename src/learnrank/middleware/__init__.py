"""HTTP middleware and exception handlers for the rank API."""

from fastapi import FastAPI

from learnrank.config import Settings
from learnrank.middleware.cors import setup_cors
from learnrank.middleware.error_handler import setup_error_handlers
from learnrank.middleware.logging import setup_logging
from learnrank.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)
    # Added last so it is outermost and decorates error responses as well.
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
