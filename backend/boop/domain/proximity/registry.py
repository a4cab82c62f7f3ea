"""In-process map of users to their live Socket.IO sessions."""

from __future__ import annotations

import asyncio
from typing import Dict, FrozenSet, Optional, Set


class ConnectionRegistry:
	"""User id <-> connection handle (sid) bookkeeping for one process.

	A user may hold several handles (devices, tabs); a handle belongs to one user.
	"""

	def __init__(self) -> None:
		self._by_user: Dict[str, Set[str]] = {}
		self._by_handle: Dict[str, str] = {}
		self._lock = asyncio.Lock()

	async def register(self, user_id: str, handle: str) -> bool:
		"""Bind ``handle`` to ``user_id``; True when it is the user's first handle."""
		async with self._lock:
			previous = self._by_handle.get(handle)
			if previous == user_id:
				return False
			if previous is not None:
				self._detach(handle, previous)
			handles = self._by_user.setdefault(user_id, set())
			first = not handles
			handles.add(handle)
			self._by_handle[handle] = user_id
			return first

	async def unregister(self, handle: str) -> Optional[str]:
		"""Forget ``handle``; returns the user it belonged to, if any."""
		async with self._lock:
			user_id = self._by_handle.pop(handle, None)
			if user_id is not None:
				self._detach(handle, user_id)
			return user_id

	def connections_for(self, user_id: str) -> FrozenSet[str]:
		return frozenset(self._by_user.get(user_id, ()))

	def user_for(self, handle: str) -> Optional[str]:
		return self._by_handle.get(handle)

	def is_connected(self, user_id: str) -> bool:
		return bool(self._by_user.get(user_id))

	def connected_users(self) -> int:
		return len(self._by_user)

	async def clear(self) -> None:
		async with self._lock:
			self._by_user.clear()
			self._by_handle.clear()

	def _detach(self, handle: str, user_id: str) -> None:
		self._by_handle.pop(handle, None)
		handles = self._by_user.get(user_id)
		if handles is None:
			return
		handles.discard(handle)
		if not handles:
			del self._by_user[user_id]
