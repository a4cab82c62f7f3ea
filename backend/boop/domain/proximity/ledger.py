"""Boop ledger: append and read a group's boop history."""

from __future__ import annotations

from typing import List

from boop.domain.proximity.directory import UserDirectory
from boop.domain.proximity.groups import GroupStore
from boop.domain.proximity.models import BoopLogEntry, BoopRecord

UNKNOWN_USER = "Unknown User"


class BoopLedger:
	def __init__(self, groups: GroupStore, directory: UserDirectory) -> None:
		self._groups = groups
		self._directory = directory

	async def append(self, group_id: str, record: BoopRecord) -> BoopRecord:
		return await self._groups.append_boop(group_id, record)

	async def log_for(self, group_id: str) -> List[BoopLogEntry]:
		"""Return the log oldest first, with participants' current display names."""
		records = await self._groups.get_boop_log(group_id)
		names = await self._directory.get_names(
			uid for record in records for uid in (record.booper, record.boopee)
		)
		return [
			BoopLogEntry(
				booper={"uid": record.booper, "name": names.get(record.booper) or UNKNOWN_USER},
				boopee={"uid": record.boopee, "name": names.get(record.boopee) or UNKNOWN_USER},
				timestamp=record.timestamp,
				location=record.location,
			)
			for record in records
		]
