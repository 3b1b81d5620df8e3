"""Observability bootstrap: JSON logs, request middleware and build info."""

from __future__ import annotations

from fastapi import FastAPI

from academyhub.obs import logging as obs_logging
from academyhub.obs import metrics, middleware
from academyhub.settings import settings

_initialised = False


def init(app: FastAPI) -> None:
	global _initialised
	if _initialised or not settings.obs_enabled:
		return
	obs_logging.configure_logging()
	middleware.install(app)
	metrics.set_build_info(
		service=settings.service_name,
		environment=settings.environment,
		commit=settings.git_commit or "unknown",
		store_backend=settings.store_backend,
	)
	_initialised = True


__all__ = ["init"]
