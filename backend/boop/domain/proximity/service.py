"""Proximity engine: location updates, zone classification and boops."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from boop.domain.proximity import geo
from boop.domain.proximity.directory import UserDirectory
from boop.domain.proximity.dispatcher import NotificationDispatcher
from boop.domain.proximity.exceptions import (
	GroupNotFound,
	InvalidLocation,
	NotInSameGroup,
	OutOfBoopRange,
	ProximityError,
	UserNotFound,
)
from boop.domain.proximity.groups import GroupStore
from boop.domain.proximity.ledger import BoopLedger
from boop.domain.proximity.locks import KeyedLock
from boop.domain.proximity.models import (
	BoopRecord,
	Candidate,
	Coordinates,
	Group,
	LocationUpdateResult,
	NearbyMatch,
	UserRecord,
	Zone,
)
from boop.domain.proximity.triggers import ProximityTriggerTracker
from boop.obs import metrics as obs_metrics
from boop.settings import settings

logger = logging.getLogger(__name__)

# Fixed boop distance; per-user hot/warm/cold zones are display hints only
BOOP_THRESHOLD_M = 10.0


def classify(distance_m: float, *, alert_radius_m: float) -> Zone:
	if distance_m <= BOOP_THRESHOLD_M:
		return Zone.BOOP
	if distance_m <= alert_radius_m:
		return Zone.ALERT
	return Zone.NONE


def _same_group(a: UserRecord, b: UserRecord) -> bool:
	return a.group_id is not None and a.group_id == b.group_id


def _eligible(user: UserRecord, candidate: Candidate) -> bool:
	other = candidate.user
	if not candidate.online or other.location is None:
		return False
	if not other.privacy.proximity_alerts:
		return False
	same_group = _same_group(user, other)
	return other.privacy.allows_visibility(same_group) and user.privacy.allows_visibility(same_group)


class ProximityEngine:
	"""Runs the location update pipeline.

	persist -> candidate search -> exact distance -> zone -> tracker decision ->
	alerts / boops -> group fan-out. Updates from one user are serialized; different
	users run concurrently and meet only in the tracker's per-pair locks.
	"""

	def __init__(
		self,
		directory: UserDirectory,
		groups: GroupStore,
		ledger: BoopLedger,
		tracker: ProximityTriggerTracker,
		dispatcher: NotificationDispatcher,
		*,
		alert_radius_m: Optional[float] = None,
		dedup_window_seconds: Optional[float] = None,
	) -> None:
		self._directory = directory
		self._groups = groups
		self._ledger = ledger
		self._tracker = tracker
		self._dispatcher = dispatcher
		self._alert_radius_m = alert_radius_m if alert_radius_m is not None else settings.proximity_alert_radius_m
		self._dedup_window = (
			dedup_window_seconds if dedup_window_seconds is not None else settings.location_dedup_window_seconds
		)
		self._user_locks = KeyedLock()

	@property
	def alert_radius_m(self) -> float:
		return self._alert_radius_m

	async def handle_location_update(self, user_id: str, latitude: object, longitude: object) -> LocationUpdateResult:
		try:
			point = geo.validate(latitude, longitude)
		except ProximityError:
			obs_metrics.inc_location_update("invalid")
			raise
		started = time.perf_counter()
		async with self._user_locks.hold(user_id):
			try:
				result = await self._process(user_id, point)
			except UserNotFound:
				obs_metrics.inc_location_update("unknown_user")
				raise
			except Exception:
				obs_metrics.inc_location_update("error")
				raise
		obs_metrics.LOCATION_UPDATE_LATENCY.observe(time.perf_counter() - started)
		obs_metrics.inc_location_update("ok" if result.changed else "unchanged")
		return result

	async def _process(self, user_id: str, point: Coordinates) -> LocationUpdateResult:
		changed = await self._directory.set_location(user_id, point, dedup_window=self._dedup_window)
		user = await self._directory.get_user(user_id)
		if user is None:
			raise UserNotFound()
		result = LocationUpdateResult(user=user, changed=changed)
		if user.privacy.proximity_alerts:
			await self._evaluate_candidates(user, point, result)
		else:
			await self._tracker.clear_user(user_id)
		if changed and user.group_id:
			members = await self._groups.members(user.group_id)
			await self._dispatcher.send_member_location(members, user)
		return result

	async def _evaluate_candidates(self, user: UserRecord, point: Coordinates, result: LocationUpdateResult) -> None:
		candidates = await self._directory.find_within_radius(point, self._alert_radius_m, excluding=user.uid)
		eligible = [candidate for candidate in candidates if _eligible(user, candidate)]
		obs_metrics.PROXIMITY_CANDIDATES.observe(len(eligible))
		in_range: set[str] = set()
		for candidate in eligible:
			other = candidate.user
			assert other.location is not None
			distance_m = geo.distance(point, other.location)
			zone = classify(distance_m, alert_radius_m=self._alert_radius_m)
			if zone is Zone.NONE:
				continue
			in_range.add(other.uid)
			decision = await self._tracker.observe(user.uid, other.uid, zone)
			match = NearbyMatch(uid=other.uid, distance_m=distance_m, zone=zone)
			if decision.alert:
				result.alerts.append(match)
				obs_metrics.inc_proximity_alert(zone.value)
				can_boop = zone is Zone.BOOP
				await self._dispatcher.send_proximity_alert(user, other, distance_m, can_boop=can_boop)
				await self._dispatcher.send_proximity_alert(other, user, distance_m, can_boop=can_boop)
			else:
				obs_metrics.PROXIMITY_ALERTS_SUPPRESSED.inc()
			if decision.boop:
				result.boops.append(match)
				record, persisted = await self._record_auto_boop(user, other, point)
				if persisted:
					result.records.append(record)
				await self._dispatcher.send_boop(record, user, other, distance_m)
		await self._tracker.prune(user.uid, in_range)

	async def _record_auto_boop(
		self, booper: UserRecord, boopee: UserRecord, point: Coordinates
	) -> Tuple[BoopRecord, bool]:
		obs_metrics.inc_boop("auto")
		record = BoopRecord(
			booper=booper.uid,
			boopee=boopee.uid,
			timestamp=datetime.now(timezone.utc),
			location=point,
		)
		group_id = await self._groups.members_share_group(booper.uid, boopee.uid)
		if group_id is None:
			obs_metrics.inc_boop_persisted("no_group")
			logger.info("boop not logged, no shared group booper=%s boopee=%s", booper.uid, boopee.uid)
			return record, False
		try:
			stored = await self._ledger.append(group_id, record)
		except GroupNotFound:
			obs_metrics.inc_boop_persisted("group_missing")
			logger.warning("boop not logged, group vanished group=%s", group_id)
			return record, False
		obs_metrics.inc_boop_persisted("ok")
		logger.info("boop logged group=%s booper=%s boopee=%s", group_id, booper.uid, boopee.uid)
		return stored, True

	async def manual_boop(
		self,
		booper_uid: str,
		boopee_uid: str,
		*,
		latitude: Optional[float] = None,
		longitude: Optional[float] = None,
	) -> Tuple[BoopRecord, Group]:
		"""Record a boop requested explicitly by a client.

		Both users must share a group. When a location is supplied it must lie
		within the boop threshold of both users' last known positions.
		"""
		booper = await self._directory.get_user(booper_uid)
		boopee = await self._directory.get_user(boopee_uid)
		if booper is None or boopee is None:
			raise UserNotFound("One or both users not found")
		group_id = await self._groups.members_share_group(booper_uid, boopee_uid)
		if group_id is None:
			raise NotInSameGroup()
		point = None
		if (latitude is None) != (longitude is None):
			raise InvalidLocation()
		if latitude is not None and longitude is not None:
			point = geo.validate(latitude, longitude)
			for participant in (booper, boopee):
				if participant.location is not None and geo.distance(point, participant.location) > BOOP_THRESHOLD_M:
					raise OutOfBoopRange()
		record = await self._ledger.append(
			group_id,
			BoopRecord(booper=booper_uid, boopee=boopee_uid, timestamp=datetime.now(timezone.utc), location=point),
		)
		obs_metrics.inc_boop("manual")
		obs_metrics.inc_boop_persisted("ok")
		group = await self._groups.get_group(group_id)
		if group is None:
			raise GroupNotFound()
		distance_m = None
		if booper.location is not None and boopee.location is not None:
			distance_m = geo.distance(booper.location, boopee.location)
		happened, _ = self._dispatcher.boop_payloads(record, booper, boopee, distance_m)
		await self._dispatcher.send_to_users(group.members, "boop_happened", happened)
		logger.info("manual boop group=%s booper=%s boopee=%s", group_id, booper_uid, boopee_uid)
		return record, group
