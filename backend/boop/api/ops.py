"""Health probes and the Prometheus scrape endpoint."""

from __future__ import annotations

import hmac
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from boop.obs import health
from boop.settings import settings

router = APIRouter(tags=["ops"])


def _presented_token(admin_header: Optional[str], authorization: Optional[str]) -> str:
	if admin_header:
		return admin_header
	scheme, _, credentials = (authorization or "").partition(" ")
	return credentials if scheme.lower() == "bearer" else ""


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	"""Public metrics need no token; otherwise an unset admin token locks the endpoint."""
	if settings.obs_metrics_public:
		return
	expected = settings.obs_admin_token
	if not expected:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	presented = _presented_token(x_admin_token, authorization)
	if not hmac.compare_digest(presented.encode(), expected.encode()):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


@router.get("/health/live")
async def health_live() -> Dict[str, Any]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready(request: Request) -> JSONResponse:
	container = getattr(request.app.state, "container", None)
	registry = container.registry if container is not None else None
	status_code, payload = await health.readiness(registry)
	return JSONResponse(payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
