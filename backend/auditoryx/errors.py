# backend/auditoryx/errors.py
"""
Problem-details error bodies for every failure the API returns.

Routes raise ``HTTPException`` with a ``{"message", "code", "details"}`` dict
(see ``DomainException.to_http_exception``); the handlers here flatten that
into ``{type, title, status, detail, instance, code, errors}``.
"""

from http import HTTPStatus
import logging
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.exceptions import DomainException

logger = logging.getLogger(__name__)


def _title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _split_detail(detail: Any) -> tuple[str, Optional[str], Any]:
    """Return (message, code, errors) from an HTTPException detail."""
    if isinstance(detail, Mapping):
        message = detail.get("message") or detail.get("detail") or ""
        code = detail.get("code")
        return (
            message if isinstance(message, str) else str(message),
            code if isinstance(code, str) else None,
            detail.get("details") or detail.get("errors") or None,
        )
    return ("" if detail is None else str(detail)), None, None


def _problem_response(
    request: Request,
    status_code: int,
    detail: str,
    *,
    code: Optional[str] = None,
    errors: Any = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": "about:blank",
        "title": _title(status_code),
        "status": status_code,
        "detail": detail,
        "instance": request.url.path,
    }
    if code:
        body["code"] = code
    if errors is not None:
        body["errors"] = jsonable_encoder(errors)
    media_type = "application/problem+json" if settings.strict_schemas else "application/json"
    return JSONResponse(
        body,
        status_code=status_code,
        media_type=media_type,
        headers=dict(headers) if headers else None,
    )


def register_error_handlers(app: FastAPI) -> None:
    # fastapi.HTTPException subclasses Starlette's, so one handler covers both
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message, code, errors = _split_detail(exc.detail)
        return _problem_response(
            request,
            exc.status_code,
            message,
            code=code,
            errors=errors,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        # Reached only when a dependency raises before a route can translate
        return await http_exception_handler(request, exc.to_http_exception())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _problem_response(
            request, 422, "Request validation failed", code="validation_error", errors=exc.errors()
        )

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _problem_response(
            request, 422, "Validation failed", code="validation_error", errors=exc.errors()
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
        return _problem_response(
            request, 500, "Internal Server Error", code="internal_server_error"
        )
