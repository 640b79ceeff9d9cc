"""Exception handlers: domain errors to HTTP status codes, JSON everywhere."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from learnsphere.errors import DuplicateError, LearnSphereError, NotFoundError, PreconditionError

logger = structlog.get_logger()

_STATUS_FOR: dict[type[LearnSphereError], int] = {
    NotFoundError: 404,
    DuplicateError: 409,
    PreconditionError: 422,
}


def status_for(exc: LearnSphereError) -> int:
    for exc_type, status in _STATUS_FOR.items():
        if isinstance(exc, exc_type):
            return status
    return 400


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(LearnSphereError)
    async def domain_exception_handler(request: Request, exc: LearnSphereError) -> JSONResponse:
        status = status_for(exc)
        logger.info("domain_error", path=request.url.path, status=status, error=str(exc))
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions — always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
