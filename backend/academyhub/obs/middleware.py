"""Request metrics and access logs."""

from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from academyhub.obs import logging as obs_logging
from academyhub.obs import metrics
from academyhub.settings import settings

# probe and scrape traffic is counted but not access-logged
_QUIET_ROUTES = frozenset({"/health/live", "/health/ready", "/metrics"})

_SLOW_REQUEST_SECONDS = 1.0


def _route_template(request: Request) -> str:
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	def __init__(self, app, *, enabled: bool = True) -> None:
		super().__init__(app)
		self._enabled = enabled
		self._logger = obs_logging.get_logger("academyhub.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not (self._enabled and settings.obs_enabled):
			return await call_next(request)

		client = request.client
		tokens = obs_logging.bind_context(
			request_id=getattr(request.state, "request_id", None),
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
			client_ip=client.host if client else None,
		)
		start = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
			return response
		except Exception:
			self._logger.exception("http.unhandled", extra={"method": request.method})
			raise
		finally:
			elapsed = time.perf_counter() - start
			route = _route_template(request)
			metrics.observe_request(route, request.method, status_code, elapsed)
			if route not in _QUIET_ROUTES or status_code >= 500:
				level = "warning" if elapsed >= _SLOW_REQUEST_SECONDS or status_code >= 500 else "info"
				getattr(self._logger, level)(
					"http.request",
					extra={
						"method": request.method,
						"route_template": route,
						"status": status_code,
						"latency_ms": round(elapsed * 1000, 3),
						"query": request.url.query,
					},
				)
			obs_logging.reset_context(tokens)


def install(app, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
