"""Group membership and the per-group boop log, stored in Redis."""

from __future__ import annotations

import dataclasses
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from boop.domain.proximity.directory import RedisUserDirectory
from boop.domain.proximity.exceptions import AlreadyInGroup, GroupNotFound, ProximityError, UserNotFound
from boop.domain.proximity.models import BoopRecord, Coordinates, Group
from boop.infra.redis import RedisProxy, redis_client

logger = logging.getLogger(__name__)

GROUP_ID_ALPHABET = string.ascii_uppercase + string.digits
GROUP_ID_LENGTH = 6


def group_key(group_id: str) -> str:
	return f"group:{group_id}"


def members_key(group_id: str) -> str:
	return f"group:{group_id}:members"


def boop_log_key(group_id: str) -> str:
	return f"group:{group_id}:booplog"


def new_group_id() -> str:
	return "".join(secrets.choice(GROUP_ID_ALPHABET) for _ in range(GROUP_ID_LENGTH))


class GroupStore(Protocol):
	async def get_group(self, group_id: str) -> Optional[Group]:
		...

	async def members(self, group_id: str) -> List[str]:
		...

	async def members_share_group(self, first: str, second: str) -> Optional[str]:
		...

	async def append_boop(self, group_id: str, record: BoopRecord) -> BoopRecord:
		...

	async def get_boop_log(self, group_id: str) -> List[BoopRecord]:
		...


def _record_from_entry(entry_id: str, fields: dict) -> BoopRecord:
	millis = int(entry_id.split("-", 1)[0])
	location = None
	if fields.get("lat") and fields.get("lon"):
		location = Coordinates(latitude=float(fields["lat"]), longitude=float(fields["lon"]))
	return BoopRecord(
		booper=fields.get("booper", ""),
		boopee=fields.get("boopee", ""),
		timestamp=datetime.fromtimestamp(millis / 1000, tz=timezone.utc),
		location=location,
		record_id=entry_id,
	)


class RedisGroupStore:
	"""Groups as hashes, members as a join-ordered sorted set, boop log as a stream.

	A user belongs to at most one group; the group id lives on the user hash.
	"""

	def __init__(self, directory: RedisUserDirectory, client: RedisProxy = redis_client) -> None:
		self._redis = client
		self._directory = directory

	async def get_group(self, group_id: str) -> Optional[Group]:
		raw = await self._redis.hgetall(group_key(group_id))
		if not raw:
			return None
		members = await self.members(group_id)
		return Group(group_id=group_id, name=raw.get("name", ""), members=tuple(members))

	async def members(self, group_id: str) -> List[str]:
		return [str(member) for member in await self._redis.zrange(members_key(group_id), 0, -1)]

	async def members_share_group(self, first: str, second: str) -> Optional[str]:
		"""Return the group both users belong to, or None."""
		if first == second:
			return None
		a = await self._directory.get_user(first)
		b = await self._directory.get_user(second)
		if a is None or b is None or not a.group_id or a.group_id != b.group_id:
			return None
		async with self._redis.pipeline(transaction=False) as pipe:
			pipe.zscore(members_key(a.group_id), first)
			pipe.zscore(members_key(a.group_id), second)
			score_a, score_b = await pipe.execute()
		if score_a is None or score_b is None:
			return None
		return a.group_id

	async def append_boop(self, group_id: str, record: BoopRecord) -> BoopRecord:
		"""Append ``record`` to the group's log.

		The stored timestamp is taken from the stream entry id, so the log stays
		ordered even when appends race.
		"""
		if not await self._redis.exists(group_key(group_id)):
			raise GroupNotFound()
		fields = {"booper": record.booper, "boopee": record.boopee}
		if record.location is not None:
			fields["lat"] = repr(record.location.latitude)
			fields["lon"] = repr(record.location.longitude)
		entry_id = await self._redis.xadd(boop_log_key(group_id), fields)
		stored = _record_from_entry(str(entry_id), fields)
		return dataclasses.replace(record, timestamp=stored.timestamp, record_id=stored.record_id)

	async def get_boop_log(self, group_id: str) -> List[BoopRecord]:
		if not await self._redis.exists(group_key(group_id)):
			raise GroupNotFound()
		entries = await self._redis.xrange(boop_log_key(group_id), "-", "+")
		return [_record_from_entry(str(entry_id), fields) for entry_id, fields in entries]

	async def create_group(self, name: str, creator_uid: str, *, group_id: Optional[str] = None) -> Group:
		user = await self._directory.get_user(creator_uid)
		if user is None:
			raise UserNotFound()
		if user.group_id:
			raise AlreadyInGroup()
		group_id = group_id or new_group_id()
		created = await self._redis.hsetnx(group_key(group_id), "group_id", group_id)
		if not created:
			raise ProximityError("Group id already taken")
		now = time.time()
		async with self._redis.pipeline(transaction=True) as pipe:
			pipe.hset(group_key(group_id), mapping={"name": name, "created_at": repr(now)})
			pipe.zadd(members_key(group_id), {creator_uid: now})
			await pipe.execute()
		await self._directory.set_group(creator_uid, group_id)
		logger.info("group created group=%s creator=%s", group_id, creator_uid)
		return Group(group_id=group_id, name=name, members=(creator_uid,))

	async def join_group(self, group_id: str, user_id: str) -> Group:
		user = await self._directory.get_user(user_id)
		if user is None:
			raise UserNotFound()
		if user.group_id:
			raise AlreadyInGroup()
		if not await self._redis.exists(group_key(group_id)):
			raise GroupNotFound()
		await self._redis.zadd(members_key(group_id), {user_id: time.time()}, nx=True)
		await self._directory.set_group(user_id, group_id)
		group = await self.get_group(group_id)
		assert group is not None
		return group

	async def leave_group(self, group_id: str, user_id: str) -> bool:
		"""Remove the user; returns True when the group was deleted as empty."""
		user = await self._directory.get_user(user_id)
		if user is None:
			raise UserNotFound()
		if not await self._redis.exists(group_key(group_id)):
			raise GroupNotFound()
		if user.group_id != group_id:
			raise ProximityError("User is not in this group")
		await self._redis.zrem(members_key(group_id), user_id)
		await self._directory.set_group(user_id, None)
		if await self._redis.zcard(members_key(group_id)) == 0:
			await self._redis.delete(group_key(group_id), members_key(group_id), boop_log_key(group_id))
			logger.info("group deleted group=%s", group_id)
			return True
		return False
