"""Request ID helper for endpoints.

The request id is stored on ``request.state`` by ``RequestIdMiddleware`` and
bound into the logging context by the observability middleware.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from academyhub.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    """Return the current request id if bound, else a default."""
    if request is not None:
        rid = getattr(request.state, REQUEST_ID_ATTR, None)
        if rid:
            return str(rid)
    return obs_logging.current_request_id() or default
