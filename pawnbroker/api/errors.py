"""Exception handlers: every failure leaves the API in the same envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pawnbroker.api.responses import request_id_of
from pawnbroker.config import settings
from pawnbroker.errors import CoreError

logger = logging.getLogger("pawnbroker.api")

STATUS_BY_KIND = {
    "validation": 400,
    "not_found": 404,
    "duplicate": 409,
    "forbidden": 403,
    "invalid_state": 400,
    "business_rule": 400,
    "upstream": 502,
    "unauthenticated": 401,
}


def error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    errors: list[str] | None = None,
    detail: Any = None,
    kind: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = request_id_of(request)
    content: dict[str, Any] = {
        "success": False,
        "message": message,
        "errors": errors or [],
        "kind": kind,
        "request_id": request_id,
    }
    if detail is not None and not settings.is_production:
        content["detail"] = jsonable_encoder(detail)
    response = JSONResponse(status_code=status_code, content=content, headers=headers)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def _field_errors(exc: RequestValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "request"
        out.append(f"{field}: {err.get('msg', 'invalid value')}")
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError):
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        errors = [f"{exc.field}: {exc.message}"] if exc.field else [exc.message]
        if status_code >= 500:
            logger.warning("core_error kind=%s request_id=%s message=%s", exc.kind, request_id_of(request), exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        return error_response(
            request, status_code, exc.message, errors=errors, detail=exc.detail, kind=exc.kind, headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(
            request, 400, "Validation failed", errors=_field_errors(exc), detail=exc.errors(), kind="validation"
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return error_response(request, exc.status_code, message, errors=[message], headers=getattr(exc, "headers", None))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("integrity_error request_id=%s error=%s", request_id_of(request), exc.orig)
        return error_response(
            request, 409, "Conflicts with an existing record", detail=str(exc.orig), kind="duplicate"
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error request_id=%s", request_id_of(request), exc_info=exc)
        return error_response(request, 500, "Internal Server Error", detail=repr(exc), kind="internal")
