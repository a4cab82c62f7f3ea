"""Keyed asyncio locks that clean up after themselves."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Hashable


@dataclass
class _Entry:
	lock: asyncio.Lock = field(default_factory=asyncio.Lock)
	holders: int = 0


class KeyedLock:
	"""One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

	def __init__(self) -> None:
		self._entries: Dict[Hashable, _Entry] = {}

	@asynccontextmanager
	async def hold(self, key: Hashable) -> AsyncIterator[None]:
		entry = self._entries.get(key)
		if entry is None:
			entry = self._entries[key] = _Entry()
		entry.holders += 1
		try:
			async with entry.lock:
				yield
		finally:
			entry.holders -= 1
			if entry.holders == 0:
				self._entries.pop(key, None)

	def __len__(self) -> int:
		return len(self._entries)
