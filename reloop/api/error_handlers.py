"""Global exception handlers: domain errors, request validation, catch-all."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from reloop.core.errors import ErrorCategory, ReloopError

log = logging.getLogger(__name__)
audit_log = logging.getLogger("reloop.audit")


def register_error_handlers(app: FastAPI) -> None:
    _register_reloop_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _register_reloop_error_handler(app: FastAPI) -> None:

    @app.exception_handler(ReloopError)
    async def reloop_error_handler(request: Request, exc: ReloopError):
        extra = {"error_code": exc.code, "path": request.url.path}
        if exc.category == ErrorCategory.AUTHORIZATION:
            audit_log.warning("denied: %s", exc.message, extra=extra)
        elif exc.category == ErrorCategory.TRANSIENT:
            log.warning("transient failure: %s", exc.message, extra=extra)
        else:
            log.info("%s: %s", exc.code, exc.message, extra=extra)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())


def _register_validation_error_handler(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        log.info("validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Invalid request data",
                    "category": ErrorCategory.VALIDATION.value,
                    "details": [
                        {
                            "field": ".".join(str(loc) for loc in e["loc"]),
                            "message": e["msg"],
                            "type": e["type"],
                        }
                        for e in exc.errors()
                    ],
                }
            },
        )


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        # never leaks internals
        log.error("unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred", "category": "internal"}},
        )
