"""Wiring of the proximity objects for one process."""

from __future__ import annotations

from dataclasses import dataclass

from boop.domain.proximity.directory import RedisUserDirectory
from boop.domain.proximity.dispatcher import NotificationDispatcher, Transport
from boop.domain.proximity.groups import RedisGroupStore
from boop.domain.proximity.ledger import BoopLedger
from boop.domain.proximity.presence import PresenceService
from boop.domain.proximity.registry import ConnectionRegistry
from boop.domain.proximity.service import ProximityEngine
from boop.domain.proximity.triggers import ProximityTriggerTracker
from boop.infra.redis import RedisProxy, redis_client
from boop.settings import settings


@dataclass
class ProximityContainer:
	directory: RedisUserDirectory
	groups: RedisGroupStore
	ledger: BoopLedger
	tracker: ProximityTriggerTracker
	registry: ConnectionRegistry
	dispatcher: NotificationDispatcher
	engine: ProximityEngine
	presence: PresenceService

	async def shutdown(self) -> None:
		await self.registry.clear()
		self.tracker.reset()


def build_container(transport: Transport, *, client: RedisProxy = redis_client) -> ProximityContainer:
	directory = RedisUserDirectory(client)
	groups = RedisGroupStore(directory, client)
	ledger = BoopLedger(groups, directory)
	tracker = ProximityTriggerTracker(realert_seconds=settings.proximity_realert_seconds)
	registry = ConnectionRegistry()
	dispatcher = NotificationDispatcher(registry, transport)
	engine = ProximityEngine(
		directory,
		groups,
		ledger,
		tracker,
		dispatcher,
		alert_radius_m=settings.proximity_alert_radius_m,
		dedup_window_seconds=settings.location_dedup_window_seconds,
	)
	presence = PresenceService(directory, tracker, ttl_seconds=settings.presence_ttl_seconds)
	return ProximityContainer(
		directory=directory,
		groups=groups,
		ledger=ledger,
		tracker=tracker,
		registry=registry,
		dispatcher=dispatcher,
		engine=engine,
		presence=presence,
	)
