"""Liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Optional, Tuple

from boop.domain.proximity.registry import ConnectionRegistry
from boop.infra.redis import redis_client
from boop.obs import metrics
from boop.settings import settings

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # noqa: BLE001
		metrics.mark_redis(False)
		LOGGER.warning("redis readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	metrics.mark_redis(True)
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok", "service": settings.service_name, "commit": settings.git_commit}


async def readiness(registry: Optional[ConnectionRegistry] = None) -> Tuple[int, Dict[str, Any]]:
	"""Redis must answer; socket counts are informational."""
	redis_state = await _redis_status()
	ok = bool(redis_state.get("ok"))
	checks: Dict[str, Any] = {"redis": redis_state}
	if registry is not None:
		checks["sockets"] = {"connected_users": registry.connected_users()}
	return 200 if ok else 503, {"status": "ok" if ok else "degraded", "checks": checks}
