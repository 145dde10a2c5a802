"""Exception handlers: domain errors to 400/404, everything else to a JSON 500."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from questline.progression.errors import (
    AwardNotFoundError,
    FocusSessionNotFoundError,
    InvalidActionError,
    ProfileNotFoundError,
    TemplateNotFoundError,
)

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(InvalidActionError)
    async def invalid_action_handler(request: Request, exc: InvalidActionError) -> JSONResponse:
        logger.info("invalid_action", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.info("not_found", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    for not_found in (ProfileNotFoundError, TemplateNotFoundError, AwardNotFoundError, FocusSessionNotFoundError):
        app.add_exception_handler(not_found, not_found_handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, including storage failures."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
