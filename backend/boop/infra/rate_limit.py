"""Fixed-window Redis counters for location updates and manual boops."""

from __future__ import annotations

import math
import time
from typing import Optional, Tuple

from boop.infra.redis import redis_client


class RateLimitExceeded(Exception):
	"""Raised when an actor used up its budget for the current window."""

	def __init__(self, kind: str = "request", retry_after: int = 1) -> None:
		super().__init__(f"rate limit exceeded for {kind}")
		self.kind = kind
		self.retry_after = max(1, int(retry_after))


def _window(kind: str, actor_id: str, window: int, now: float) -> Tuple[str, int]:
	slot = int(math.floor(now / window))
	retry_after = int(math.ceil((slot + 1) * window - now))
	return f"rl:{kind}:{actor_id}:{slot}:{window}", retry_after


async def hit(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> Tuple[bool, int]:
	"""Count one attempt; returns (allowed, seconds until the window resets)."""
	window = max(1, int(window_seconds))
	key, retry_after = _window(kind, actor_id, window, time.time() if now is None else now)
	if limit <= 0:
		return False, retry_after
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	return int(count) <= limit, retry_after


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	allowed, _ = await hit(kind, actor_id, limit=limit, window_seconds=window_seconds, now=now)
	return allowed


async def enforce(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> None:
	"""Like ``allow`` but raises ``RateLimitExceeded`` when over budget."""
	allowed, retry_after = await hit(kind, actor_id, limit=limit, window_seconds=window_seconds, now=now)
	if not allowed:
		raise RateLimitExceeded(kind, retry_after)
