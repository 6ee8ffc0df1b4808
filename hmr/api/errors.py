"""Exception -> JSON error body mapping.

Every error leaves the API as ``{"error", "detail", "retryable"}``; the
catch-all handler makes sure no traceback reaches the client.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from hmr.common.exceptions import (
    ExtractionFailure,
    HMRError,
    JobNotFoundError,
    JobNotReadyError,
    PathError,
    PersistenceError,
    RenderFailure,
    StaleResultError,
    StepBlockedError,
    TemplateError,
    TemplateMappingError,
    TemplateNotFoundError,
    UnsupportedTemplateError,
    WorkflowError,
)
from hmr.reporting.metadata import issue_to_dict
from observability.logging_config import get_logger

logger = get_logger(__name__)


def status_for(exc: HMRError) -> int:
    if isinstance(exc, ExtractionFailure):
        # No media type means the upload was not a PDF at all.
        return 415 if exc.media_type is None else 422
    if isinstance(exc, UnsupportedTemplateError):
        return 415
    if isinstance(exc, (TemplateNotFoundError, JobNotFoundError)):
        return 404
    if isinstance(exc, (PathError, TemplateMappingError)):
        return 400
    if isinstance(exc, TemplateError):
        return 422
    if isinstance(exc, (WorkflowError, StaleResultError, JobNotReadyError)):
        return 409
    if isinstance(exc, (RenderFailure, PersistenceError)):
        return 500
    return 500


def error_body(error: str, detail: str, retryable: bool = False, **extra) -> dict:
    body = {"error": error, "detail": detail, "retryable": retryable}
    body.update(extra)
    return body


async def _hmr_error(request: Request, exc: HMRError) -> JSONResponse:
    status = status_for(exc)
    extra = {}
    if isinstance(exc, StepBlockedError):
        extra["issues"] = [issue_to_dict(i) for i in exc.issues]
    if isinstance(exc, PathError) and exc.path:
        extra["path"] = exc.path
    retryable = bool(exc.retryable) or isinstance(exc, (StaleResultError, JobNotReadyError))
    log = logger.error if status >= 500 else logger.info
    log("Request failed", extra={"path": request.url.path, "status": status, "error": type(exc).__name__})
    return JSONResponse(status_code=status, content=error_body(type(exc).__name__, str(exc), retryable, **extra))


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("HTTPException", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    return JSONResponse(
        status_code=422,
        content=error_body("RequestValidationError", f"{where}: {first.get('msg', 'invalid request')}"),
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=error_body("InternalError", "An unexpected error occurred", True),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HMRError, _hmr_error)
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled)


__all__ = ["error_body", "register_error_handlers", "status_for"]
