"""JSON logs with request context for the search service."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from academyhub.settings import settings

_LOGGER_NAME = "academyhub"

# context field -> key written into the log payload
_CONTEXT_KEYS: Dict[str, str] = {
	"request_id": "request_id",
	"route": "route",
	"user_id": "user_id",
	"client_ip": "ip",
}
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	field: ContextVar(f"academyhub_log_{field}", default=None) for field in _CONTEXT_KEYS
}

# provider keys, store credentials and gateway headers
_REDACTED_FRAGMENTS = ("token", "secret", "authorization", "password", "api_key", "access_key", "client_id", "mongo_url", "uri")

# raw search text is user input; keep enough to debug relevance
_FIELD_LIMITS = {"query": 80, "partial": 80, "error": 512}
_DEFAULT_LIMIT = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind request fields (request_id, route, user_id, client_ip); returns reset tokens."""
	tokens: Dict[str, Token] = {}
	for field, value in fields.items():
		if field not in _CONTEXT:
			raise TypeError(f"unknown log context field: {field}")
		if value is not None:
			tokens[field] = _CONTEXT[field].set(value)
	return tokens


def reset_context(tokens: Mapping[str, Token]) -> None:
	for field, token in tokens.items():
		_CONTEXT[field].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _clip(value: Any, limit: int) -> Any:
	if isinstance(value, str):
		return value if len(value) <= limit else value[:limit] + "…"
	if isinstance(value, Mapping):
		items = list(value.items())
		clipped = {str(key): _clean(str(key), nested) for key, nested in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			clipped["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		values = list(value)
		clipped_list = [_clip(item, limit) for item in values[:_MAX_ITEMS]]
		if len(values) > _MAX_ITEMS:
			clipped_list.append("…")
		return clipped_list
	if value is None or isinstance(value, (bool, int, float)):
		return value
	return _clip(str(value), limit)


def _clean(key: str, value: Any) -> Any:
	lowered = key.lower()
	if any(fragment in lowered for fragment in _REDACTED_FRAGMENTS):
		return "[redacted]"
	return _clip(value, _FIELD_LIMITS.get(lowered, _DEFAULT_LIMIT))


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record: base fields, bound context, then ``extra=`` fields."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for field, key in _CONTEXT_KEYS.items():
			value = _CONTEXT[field].get()
			if value:
				payload[key] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _clean(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info records at ``obs_log_sampling_rate_info``; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = min(1.0, max(0.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
