"""Redis connection management.

Every store imports the same ``redis_client`` proxy; the client behind it can be
swapped at runtime (fakeredis in tests) without touching those imports.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import redis.asyncio as redis

from boop.settings import settings


class RedisProxy:
	"""Forward attribute access to the current Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def geosearch_members(
		self,
		name: str,
		*,
		longitude: float,
		latitude: float,
		radius: float,
		unit: str = "m",
		withdist: bool = True,
		sort: Optional[str] = "ASC",
		count: Optional[int] = None,
	) -> List[Tuple[str, Optional[float]]]:
		"""GEOSEARCH around a point, normalised to ``(member, distance or None)``."""
		results = await self._client.geosearch(
			name,
			longitude=longitude,
			latitude=latitude,
			radius=radius,
			unit=unit,
			withdist=withdist,
			sort=sort,
			count=count,
		)
		if not results:
			return []
		if withdist:
			return [(str(member), float(dist)) for member, dist in results]
		return [(str(member), None) for member in results]

	async def close(self) -> None:
		await self._client.aclose()

	# Fallback: delegate everything else to the underlying client
	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
