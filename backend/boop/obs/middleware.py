"""HTTP middleware: request ids, access logs and request metrics."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from boop.obs import logging as obs_logging
from boop.obs import metrics
from boop.settings import settings

REQUEST_ID_HEADER = "X-Request-Id"


def _route_label(request: Request) -> str:
	# Template path keeps metric cardinality bounded (/groups/{group_id}/members)
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	def __init__(self, app, *, enabled: bool = True) -> None:
		super().__init__(app)
		self._enabled = enabled
		self._log = obs_logging.get_logger("boop.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
		request.state.request_id = request_id
		if self._enabled and settings.obs_enabled:
			response = await self._instrumented(request, call_next, request_id)
		else:
			response = await call_next(request)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response

	async def _instrumented(self, request: Request, call_next: RequestResponseEndpoint, request_id: str) -> Response:
		token = obs_logging.bind_context(
			request_id=request_id,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
		)
		started = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
			return response
		except Exception:
			self._log.exception("http_request_error", extra={"method": request.method, "path": request.url.path})
			raise
		finally:
			elapsed = time.perf_counter() - started
			metrics.observe_request(_route_label(request), request.method, status_code, elapsed)
			self._log.info(
				"http_request",
				extra={"method": request.method, "status": status_code, "latency_ms": round(elapsed * 1000, 3)},
			)
			obs_logging.reset_context(token)


def install(app: FastAPI, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
