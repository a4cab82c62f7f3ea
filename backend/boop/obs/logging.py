"""JSON logging with per-request and per-socket context.

Context fields (request id, route, user id, socket sid) are bound through a
single context variable so nested binds from the HTTP middleware and the socket
namespace stack cleanly and unwind with one reset.
"""

from __future__ import annotations

import json
import logging
import random
import re
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from boop.settings import settings

_LOGGER_NAME = "boop"
_CONTEXT_FIELDS = ("request_id", "route", "user_id", "sid")
_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("obs_context", default={})

# Coordinates and credentials never reach the log sink
_REDACT_SUBSTRING = re.compile(r"token|secret|authorization|password|email|geo|latitude|longitude|location|coordinates")
_REDACT_EXACT = frozenset({"lat", "lon", "lng"})
_REDACTED = "[redacted]"

_MAX_STRING = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer ``fields`` over the current context; pass the token to ``reset_context``."""
	unknown = set(fields) - set(_CONTEXT_FIELDS)
	if unknown:
		raise TypeError(f"unknown log context fields: {sorted(unknown)}")
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if value is not None})
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	return lowered in _REDACT_EXACT or _REDACT_SUBSTRING.search(lowered) is not None


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else value[:_MAX_STRING] + "…"
	if isinstance(value, Mapping):
		items = list(value.items())
		clipped = {str(key): (_REDACTED if _is_sensitive(str(key)) else _clip(nested)) for key, nested in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			clipped["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [_clip(item) for item in value]
		return items if len(items) <= _MAX_ITEMS else items[:_MAX_ITEMS] + ["…"]
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record: static service fields, bound context, then extras."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in vars(record).items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _REDACTED if _is_sensitive(key) else _clip(value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Drop a share of INFO records; every other level passes."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = settings.obs_log_sampling_rate_info
		return rate >= 1.0 or random.random() < max(0.0, rate)


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
