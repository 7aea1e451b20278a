"""FastAPI exception handlers aligned with HTTP API contract."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...services.export_import import ImportFormatError
from ...services.notebook import NotebookValidationError
from ...services.optimistic import InitializationError, PersistenceError
from ...services.providers.base import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_ERRORS: Dict[int, Tuple[str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("validation_error", "Invalid request payload"),
    status.HTTP_404_NOT_FOUND: ("not_found", "Resource not found"),
    status.HTTP_409_CONFLICT: ("conflict", "Resource conflict"),
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: (
        "payload_too_large",
        "Payload exceeds allowed size",
    ),
    status.HTTP_500_INTERNAL_SERVER_ERROR: ("internal_error", "Internal server error"),
    status.HTTP_502_BAD_GATEWAY: ("provider_error", "Model provider request failed"),
    status.HTTP_503_SERVICE_UNAVAILABLE: ("persistence_error", "Changes could not be saved"),
}

VALIDATION_STATUS = {
    "invalid": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
}


def _normalize_error(
    status_code: int, detail: Any
) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    default_error, default_message = DEFAULT_ERRORS.get(
        status_code, DEFAULT_ERRORS[status.HTTP_500_INTERNAL_SERVER_ERROR]
    )
    if isinstance(detail, dict):
        error = detail.get("error", default_error)
        message = detail.get("message", default_message)
        detail_payload = detail.get("detail")
        if detail_payload is None:
            remainder = {
                k: v for k, v in detail.items() if k not in {"error", "message", "detail"}
            }
            detail_payload = remainder or None
        return error, message, detail_payload
    if isinstance(detail, str) and detail:
        return default_error, detail, None
    return default_error, default_message, None


def _response(status_code: int, detail: Any) -> JSONResponse:
    error, message, extra = _normalize_error(status_code, detail)
    return JSONResponse(
        status_code=status_code, content={"error": error, "message": message, "detail": extra}
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    detail = {"detail": {"errors": exc.errors()}}
    return _response(status.HTTP_400_BAD_REQUEST, detail)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return _response(exc.status_code, exc.detail)


async def notebook_validation_handler(
    request: Request, exc: NotebookValidationError
) -> JSONResponse:
    status_code = VALIDATION_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    return _response(status_code, exc.message)


async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    return _response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {"message": exc.message, "detail": {"operation": exc.operation}},
    )


async def initialization_exception_handler(
    request: Request, exc: InitializationError
) -> JSONResponse:
    return _response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {"error": "initialization_error", "message": exc.message},
    )


async def import_format_handler(request: Request, exc: ImportFormatError) -> JSONResponse:
    return _response(status.HTTP_400_BAD_REQUEST, {"error": "import_format_error", "message": exc.message})


async def provider_exception_handler(request: Request, exc: ProviderError) -> JSONResponse:
    return _response(
        status.HTTP_502_BAD_GATEWAY,
        {"message": exc.message, "detail": {"retryable": exc.retryable}},
    )


async def internal_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.args[0] if exc.args else None)


def register_error_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(NotebookValidationError, notebook_validation_handler)
    app.add_exception_handler(PersistenceError, persistence_exception_handler)
    app.add_exception_handler(InitializationError, initialization_exception_handler)
    app.add_exception_handler(ImportFormatError, import_format_handler)
    app.add_exception_handler(ProviderError, provider_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)


__all__ = [
    "register_error_handlers",
    "validation_exception_handler",
    "http_exception_handler",
    "internal_exception_handler",
]
