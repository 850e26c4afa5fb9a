import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.edutrack.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.edutrack.core.logging import log_json
from app.edutrack.core.metrics import metrics

logger = logging.getLogger("edutrack.errors")


_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_LOCK_TIMEOUT_MARKERS = (
    "lock timeout",
    "deadlock detected",
    "database is locked",
    "could not obtain lock",
)


def _set_error_context(request: Request, code: str, exc: Exception | None = None) -> None:
    request.state.error_code = code
    if exc is not None:
        request.state.error_class = exc.__class__.__name__


def _is_lock_timeout(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _record_idempotency_failure(request: Request, status_code: int, response_body: dict) -> None:
    context = getattr(request.state, "idempotency", None)
    if context is None:
        return
    context.record_failure(status_code=status_code, response_body=response_body)


def _json_safe(value):
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    if isinstance(value, Exception):
        return str(value)
    return value


def _validation_error_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        field = ".".join(str(item) for item in loc if item not in {"body", "query", "path", "header"}) or None
        errors.append(
            {
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
                "input": _json_safe(error.get("input")),
                "ctx": _json_safe(error.get("ctx")),
            }
        )
    return {"errors": errors}


def error_payload(request: Request, code: str, message: str, details: object) -> dict:
    return {
        "code": code,
        "message": message,
        "details": _json_safe(details),
        "trace_id": _trace_id(request),
    }


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": details,
            "trace_id": trace_id,
        },
    )


def _respond(request: Request, error: ErrorDefinition, details: object, exc: Exception) -> JSONResponse:
    _set_error_context(request, error.code, exc)
    payload = error_payload(request, error.code, error.message, details)
    _record_idempotency_failure(request, error.status_code, payload)
    return JSONResponse(status_code=error.status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return _respond(request, exc.error, exc.details, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code = _HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
        message = str(exc.detail) if exc.detail is not None else "HTTP error"
        error = ErrorDefinition(code, message, exc.status_code)
        return _respond(request, error, None, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _respond(request, ErrorCatalog.VALIDATION_ERROR, _validation_error_details(exc), exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        error = ErrorCatalog.INTERNAL_ERROR
        if isinstance(exc, StaleDataError):
            # A versioned write that escaped the service unit of work.
            error = ErrorCatalog.CONCURRENCY_CONFLICT
            metrics.increment_concurrency_conflict()
        elif _is_lock_timeout(exc):
            error = ErrorCatalog.LOCK_TIMEOUT
            metrics.increment_lock_wait_timeout()
        else:
            log_json(
                logger,
                {
                    "event": "unhandled_error",
                    "trace_id": _trace_id(request),
                    "path": request.url.path,
                    "error_class": exc.__class__.__name__,
                },
                level=logging.ERROR,
            )
        return _respond(request, error, {"type": exc.__class__.__name__}, exc)
