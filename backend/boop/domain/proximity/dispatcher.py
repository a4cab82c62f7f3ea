"""Outbound event delivery to every live connection of a user."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Protocol

from boop.domain.proximity import geo
from boop.domain.proximity.exceptions import DeliveryDropped
from boop.domain.proximity.models import BoopRecord, UserRecord
from boop.domain.proximity.registry import ConnectionRegistry
from boop.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

BOOP_SUCCESS_MESSAGE = "Boop successful!"


class Transport(Protocol):
	async def send(self, handle: str, event: str, payload: Dict[str, Any]) -> None:
		...


def _distance_field(distance_m: Optional[float]) -> Optional[float]:
	return round(distance_m, 2) if distance_m is not None else None


class NotificationDispatcher:
	def __init__(self, registry: ConnectionRegistry, transport: Transport) -> None:
		self._registry = registry
		self._transport = transport

	async def send_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> int:
		"""Deliver to all of the user's handles; returns how many accepted it.

		Delivery is best effort: failures are logged and counted, never raised.
		"""
		handles = self._registry.connections_for(user_id)
		if not handles:
			dropped = DeliveryDropped(f"{event} to {user_id}: no live connection")
			logger.debug("delivery dropped: %s", dropped.reason)
			obs_metrics.inc_delivery(event, "dropped")
			return 0
		delivered = 0
		for handle in handles:
			try:
				await self._transport.send(handle, event, payload)
			except DeliveryDropped as exc:
				logger.debug("delivery dropped: %s", exc.reason)
				obs_metrics.inc_delivery(event, "dropped")
			except Exception:  # noqa: BLE001
				logger.warning("delivery failed event=%s user=%s sid=%s", event, user_id, handle, exc_info=True)
				obs_metrics.inc_delivery(event, "failed")
			else:
				delivered += 1
		if delivered:
			obs_metrics.inc_delivery(event, "delivered", delivered)
		return delivered

	async def send_to_users(self, user_ids: Iterable[str], event: str, payload: Dict[str, Any]) -> int:
		total = 0
		for user_id in dict.fromkeys(user_ids):
			total += await self.send_to_user(user_id, event, payload)
		return total

	async def send_proximity_alert(
		self,
		recipient: UserRecord,
		nearby: UserRecord,
		distance_m: float,
		*,
		can_boop: bool,
	) -> int:
		bearing = 0.0
		if recipient.location is not None and nearby.location is not None:
			bearing = round(geo.bearing(recipient.location, nearby.location), 1)
		payload = {
			"nearbyUser": nearby.nearby_view(),
			"distance": _distance_field(distance_m),
			"canBoop": can_boop,
			"bearing": bearing,
		}
		return await self.send_to_user(recipient.uid, "proximity_alert", payload)

	def boop_payloads(
		self,
		record: BoopRecord,
		booper: UserRecord,
		boopee: UserRecord,
		distance_m: Optional[float],
	) -> tuple[Dict[str, Any], Dict[str, Any]]:
		happened = {
			"booper": booper.summary(),
			"boopee": boopee.summary(),
			"timestamp": record.timestamp.isoformat(),
			"location": record.location.to_geojson() if record.location else None,
			"distance": _distance_field(distance_m),
		}
		success = {
			"message": BOOP_SUCCESS_MESSAGE,
			"boop": record.to_payload(),
			"distance": _distance_field(distance_m),
		}
		return happened, success

	async def send_boop(
		self,
		record: BoopRecord,
		booper: UserRecord,
		boopee: UserRecord,
		distance_m: Optional[float],
	) -> None:
		"""``boop_happened`` and ``boop_success`` to both participants."""
		happened, success = self.boop_payloads(record, booper, boopee, distance_m)
		for user_id in (booper.uid, boopee.uid):
			await self.send_to_user(user_id, "boop_happened", happened)
			await self.send_to_user(user_id, "boop_success", success)

	async def send_member_location(self, member_ids: Iterable[str], user: UserRecord) -> int:
		if user.location is None:
			return 0
		payload = {"uid": user.uid, "name": user.name, "location": user.location.to_geojson()}
		return await self.send_to_users(
			(member for member in member_ids if member != user.uid),
			"member_location_updated",
			payload,
		)
