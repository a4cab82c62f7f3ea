"""Per-pair trigger state: decides when a pair is alerted or booped."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from boop.domain.proximity.locks import KeyedLock
from boop.domain.proximity.models import Zone

PairKey = Tuple[str, str]


def pair_key(first: str, second: str) -> PairKey:
	return (first, second) if first <= second else (second, first)


@dataclass(slots=True)
class PairState:
	zone: Zone
	last_alert_at: float
	boop_triggered: bool = False


@dataclass(frozen=True, slots=True)
class TriggerDecision:
	zone: Zone
	alert: bool = False
	boop: bool = False


class ProximityTriggerTracker:
	"""Tracks the last zone seen for each unordered user pair.

	An alert fires when a pair is first seen, changes zone, or stays in a zone
	past ``realert_seconds``. A boop fires once per entry into the boop zone and
	re-arms only after the pair leaves it.
	"""

	def __init__(self, *, realert_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
		self._realert_seconds = realert_seconds
		self._clock = clock
		self._states: Dict[PairKey, PairState] = {}
		self._by_user: Dict[str, Set[PairKey]] = {}
		self._locks = KeyedLock()

	async def observe(self, first: str, second: str, zone: Zone) -> TriggerDecision:
		key = pair_key(first, second)
		async with self._locks.hold(key):
			if zone is Zone.NONE:
				self._drop(key)
				return TriggerDecision(zone=zone)
			now = self._clock()
			state = self._states.get(key)
			if state is None:
				state = PairState(zone=zone, last_alert_at=now)
				self._store(key, state)
				alert = True
			else:
				alert = state.zone is not zone or now - state.last_alert_at >= self._realert_seconds
				state.zone = zone
				if alert:
					state.last_alert_at = now
			boop = False
			if zone is Zone.BOOP:
				if not state.boop_triggered:
					state.boop_triggered = True
					boop = True
			else:
				state.boop_triggered = False
			return TriggerDecision(zone=zone, alert=alert, boop=boop)

	async def prune(self, user_id: str, keep: Iterable[str]) -> int:
		"""Drop the user's pairs whose other side is not in ``keep``."""
		keep_ids = set(keep)
		stale = [key for key in self._by_user.get(user_id, ()) if _other(key, user_id) not in keep_ids]
		return await self._drop_all(stale)

	async def clear_user(self, user_id: str) -> int:
		return await self._drop_all(list(self._by_user.get(user_id, ())))

	def peek(self, first: str, second: str) -> Optional[PairState]:
		return self._states.get(pair_key(first, second))

	def pairs_for(self, user_id: str) -> Set[PairKey]:
		return set(self._by_user.get(user_id, ()))

	def reset(self) -> None:
		self._states.clear()
		self._by_user.clear()

	def __len__(self) -> int:
		return len(self._states)

	async def _drop_all(self, keys: Iterable[PairKey]) -> int:
		dropped = 0
		for key in keys:
			async with self._locks.hold(key):
				if self._drop(key):
					dropped += 1
		return dropped

	def _store(self, key: PairKey, state: PairState) -> None:
		self._states[key] = state
		for user_id in key:
			self._by_user.setdefault(user_id, set()).add(key)

	def _drop(self, key: PairKey) -> bool:
		if self._states.pop(key, None) is None:
			return False
		for user_id in key:
			pairs = self._by_user.get(user_id)
			if pairs is None:
				continue
			pairs.discard(key)
			if not pairs:
				del self._by_user[user_id]
		return True


def _other(key: PairKey, user_id: str) -> str:
	return key[1] if key[0] == user_id else key[0]
