"""Exception handlers rendering every error as JSON with a "detail" key.

Domain errors also carry "error", the exception class name, so clients
can tell a missing rank row from a contended one without parsing text.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from learnrank.exceptions import (
    ConfigurationError,
    ContentionError,
    GamificationError,
    TierTableError,
    UserRankNotFoundError,
)

logger = structlog.get_logger()

_STATUS_BY_ERROR: tuple[tuple[type[GamificationError], int], ...] = (
    (UserRankNotFoundError, 404),
    (ContentionError, 409),
    (ConfigurationError, 422),
    (TierTableError, 500),
)


def status_for(exc: GamificationError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error(status_code: int, detail: object, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def setup_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, "Validation error", errors=exc.errors())

    @app.exception_handler(GamificationError)
    async def gamification_error(_request: Request, exc: GamificationError) -> JSONResponse:
        status_code = status_for(exc)
        error_type = type(exc).__name__
        if status_code >= 500:
            logger.error("gamification_error", error_type=error_type, error=str(exc))
        else:
            logger.warning("gamification_error", error_type=error_type, error=str(exc))
        return _error(status_code, str(exc), error=error_type)

    @app.exception_handler(Exception)
    async def unhandled_error(_request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_info=exc)
        return _error(500, "Internal server error")
