"""Bind a request id to ``request.state`` and echo it on the response."""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from academyhub.api.request_id import REQUEST_ID_ATTR

# upstream ids are echoed into logs and headers, so only plain tokens are trusted
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    if header_value and _ACCEPTED_ID.match(header_value):
        return header_value
    return uuid.uuid4().hex


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        rid = resolve_request_id(request.headers.get("X-Request-Id"))
        setattr(request.state, REQUEST_ID_ATTR, rid)
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", rid)
        return response
