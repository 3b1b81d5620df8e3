"""Exception handlers; every JSON error body carries ``detail`` and ``request_id``."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from academyhub.api.request_id import get_request_id
from academyhub.domain.search.policy import SearchPolicyError

_LOG = logging.getLogger(__name__)


def _body(request: Request, detail: object, **extra: object) -> dict:
    return {"detail": detail, **extra, "request_id": get_request_id(request)}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content=_body(request, exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(SearchPolicyError)
    async def policy_exc_handler(request: Request, exc: SearchPolicyError):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content=_body(request, exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()]
        return JSONResponse(status_code=422, content=_body(request, "validation_error", errors=errors))

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        _LOG.error("http.unhandled_error", exc_info=exc, extra={"path": request.url.path})
        return JSONResponse(status_code=500, content=_body(request, "internal_error"))
