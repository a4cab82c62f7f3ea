"""User directory: profiles, locations and online state kept in Redis.

Layout:
- ``user:{uid}`` hash with profile, thresholds, privacy flags and last location
- ``geo:users`` GEO set indexing users that have a location
- ``online:user:{uid}`` marker with a TTL refreshed by heartbeats
- ``presence:last_seen`` sorted set (uid -> epoch seconds) scanned by the sweeper
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from boop.domain.proximity import geo
from boop.domain.proximity.exceptions import UserNotFound
from boop.domain.proximity.models import (
	Candidate,
	Coordinates,
	PrivacySettings,
	ProximitySettings,
	UserRecord,
)
from boop.infra.redis import RedisProxy, redis_client
from boop.settings import settings

logger = logging.getLogger(__name__)

GEO_KEY = "geo:users"
LAST_SEEN_KEY = "presence:last_seen"

_FLAG_FIELDS = ("share_location", "show_to_friends", "show_to_everyone", "proximity_alerts")


def user_key(user_id: str) -> str:
	return f"user:{user_id}"


def online_key(user_id: str) -> str:
	return f"online:user:{user_id}"


class UserDirectory(Protocol):
	"""Storage contract for user lookups used by the proximity engine."""

	async def get_user(self, user_id: str) -> Optional[UserRecord]:
		...

	async def get_location(self, user_id: str) -> Optional[Coordinates]:
		...

	async def set_location(self, user_id: str, point: Coordinates, *, dedup_window: float = 0.0) -> bool:
		...

	async def find_within_radius(
		self, center: Coordinates, radius_m: float, *, excluding: Optional[str] = None
	) -> List[Candidate]:
		...

	async def is_online(self, user_id: str) -> bool:
		...

	async def proximity_alerts_enabled(self, user_id: str) -> bool:
		...

	async def mark_online(self, user_id: str, ttl_seconds: int) -> None:
		...

	async def mark_offline(self, user_id: str) -> None:
		...

	async def get_names(self, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
		...


def _flag(value: Optional[str], default: bool = True) -> bool:
	if value is None or value == "":
		return default
	return value == "1"


def _int(value: Optional[str], default: int) -> int:
	try:
		return int(float(value)) if value not in (None, "") else default
	except ValueError:
		return default


def _record_from_hash(user_id: str, raw: Dict[str, str]) -> UserRecord:
	location = None
	if raw.get("lat") not in (None, "") and raw.get("lon") not in (None, ""):
		location = Coordinates(latitude=float(raw["lat"]), longitude=float(raw["lon"]))
	last_seen = None
	if raw.get("last_seen"):
		last_seen = datetime.fromtimestamp(float(raw["last_seen"]), tz=timezone.utc)
	loc_ts = float(raw["loc_ts"]) if raw.get("loc_ts") else None
	return UserRecord(
		uid=user_id,
		name=raw.get("name") or None,
		location=location,
		group_id=raw.get("group_id") or None,
		last_seen=last_seen,
		location_updated_at=loc_ts,
		proximity=ProximitySettings(
			hot_zone=_int(raw.get("hot_zone"), settings.default_hot_zone_m),
			warm_zone=_int(raw.get("warm_zone"), settings.default_warm_zone_m),
			cold_zone=_int(raw.get("cold_zone"), settings.default_cold_zone_m),
		),
		privacy=PrivacySettings(**{name: _flag(raw.get(name)) for name in _FLAG_FIELDS}),
	)


class RedisUserDirectory:
	"""``UserDirectory`` backed by Redis hashes and a GEO index."""

	def __init__(self, client: RedisProxy = redis_client) -> None:
		self._redis = client

	async def upsert_user(self, record: UserRecord) -> UserRecord:
		"""Create or update a user's profile fields. Location is left untouched."""
		mapping: Dict[str, str] = {
			"uid": record.uid,
			"name": record.name or "",
			"group_id": record.group_id or "",
			"hot_zone": str(record.proximity.hot_zone),
			"warm_zone": str(record.proximity.warm_zone),
			"cold_zone": str(record.proximity.cold_zone),
		}
		for name in _FLAG_FIELDS:
			mapping[name] = "1" if getattr(record.privacy, name) else "0"
		await self._redis.hset(user_key(record.uid), mapping=mapping)
		return await self.get_user(record.uid) or record

	async def get_user(self, user_id: str) -> Optional[UserRecord]:
		raw = await self._redis.hgetall(user_key(user_id))
		if not raw:
			return None
		return _record_from_hash(user_id, raw)

	async def get_location(self, user_id: str) -> Optional[Coordinates]:
		lat, lon = await self._redis.hmget(user_key(user_id), ["lat", "lon"])
		if not lat or not lon:
			return None
		return Coordinates(latitude=float(lat), longitude=float(lon))

	async def set_location(self, user_id: str, point: Coordinates, *, dedup_window: float = 0.0) -> bool:
		"""Persist ``point`` for the user; returns False when nothing was written.

		Identical coordinates resubmitted within ``dedup_window`` seconds are a no-op.
		"""
		key = user_key(user_id)
		lat, lon, loc_ts = await self._stored_location(key)
		now = time.time()
		if (
			lat is not None
			and float(lat) == point.latitude
			and float(lon) == point.longitude
			and loc_ts is not None
			and now - float(loc_ts) <= dedup_window
		):
			return False
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.hset(
				key,
				mapping={
					"lat": repr(point.latitude),
					"lon": repr(point.longitude),
					"loc_ts": repr(now),
					"last_seen": repr(now),
				},
			)
			if geo.geo_indexable(point):
				pipe.geoadd(GEO_KEY, [point.longitude, point.latitude, user_id])
			else:
				pipe.zrem(GEO_KEY, user_id)
			await pipe.execute()
		return True

	async def _stored_location(self, key: str) -> tuple[Optional[str], Optional[str], Optional[str]]:
		uid, lat, lon, loc_ts = await self._redis.hmget(key, ["uid", "lat", "lon", "loc_ts"])
		if not uid:
			raise UserNotFound()
		if not lat or not lon:
			return None, None, None
		return lat, lon, loc_ts

	async def find_within_radius(
		self, center: Coordinates, radius_m: float, *, excluding: Optional[str] = None
	) -> List[Candidate]:
		if not geo.geo_indexable(center):
			logger.debug("radius search skipped for polar center lat=%s", center.latitude)
			return []
		members = await self._redis.geosearch_members(
			GEO_KEY,
			longitude=center.longitude,
			latitude=center.latitude,
			radius=radius_m,
			unit="m",
			withdist=True,
			sort="ASC",
		)
		member_ids = [member for member, _ in members if member != excluding]
		if not member_ids:
			return []
		async with self._redis.pipeline(transaction=False) as pipe:
			for member in member_ids:
				pipe.hgetall(user_key(member))
				pipe.exists(online_key(member))
			raw_results = await pipe.execute()
		distances = dict(members)
		candidates: List[Candidate] = []
		stale: List[str] = []
		for idx, member in enumerate(member_ids):
			raw, online = raw_results[2 * idx], raw_results[2 * idx + 1]
			if not raw:
				stale.append(member)
				continue
			record = _record_from_hash(member, raw)
			if record.location is None:
				continue
			candidates.append(Candidate(user=record, online=bool(online), search_distance_m=distances.get(member)))
		if stale:
			# GEO members whose user hash is gone
			await self._redis.zrem(GEO_KEY, *stale)
			logger.debug("dropped %s stale geo members", len(stale))
		return candidates

	async def is_online(self, user_id: str) -> bool:
		return bool(await self._redis.exists(online_key(user_id)))

	async def proximity_alerts_enabled(self, user_id: str) -> bool:
		uid, value = await self._redis.hmget(user_key(user_id), ["uid", "proximity_alerts"])
		if not uid:
			return False
		return _flag(value)

	async def mark_online(self, user_id: str, ttl_seconds: int) -> None:
		if not await self._redis.exists(user_key(user_id)):
			return
		now = time.time()
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.setex(online_key(user_id), max(1, int(ttl_seconds)), "1")
			pipe.hset(user_key(user_id), "last_seen", repr(now))
			pipe.zadd(LAST_SEEN_KEY, {user_id: now})
			await pipe.execute()

	async def mark_offline(self, user_id: str) -> None:
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.delete(online_key(user_id))
			pipe.zrem(LAST_SEEN_KEY, user_id)
			await pipe.execute()

	async def stale_online_users(self, older_than: float) -> List[str]:
		"""Users whose last heartbeat is older than ``older_than`` (epoch seconds)."""
		members = await self._redis.zrangebyscore(LAST_SEEN_KEY, "-inf", older_than)
		return [str(member) for member in members]

	async def set_group(self, user_id: str, group_id: Optional[str]) -> None:
		await self._redis.hset(user_key(user_id), "group_id", group_id or "")

	async def get_names(self, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
		ids: Sequence[str] = list(dict.fromkeys(user_ids))
		if not ids:
			return {}
		async with self._redis.pipeline(transaction=False) as pipe:
			for user_id in ids:
				pipe.hmget(user_key(user_id), ["uid", "name"])
			rows = await pipe.execute()
		names: Dict[str, Optional[str]] = {}
		for user_id, (uid, name) in zip(ids, rows):
			if uid:
				names[user_id] = name or None
		return names
