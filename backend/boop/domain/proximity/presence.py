"""Online presence: heartbeat refresh and the stale-user sweeper."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from boop.domain.proximity.directory import RedisUserDirectory
from boop.domain.proximity.triggers import ProximityTriggerTracker
from boop.obs import metrics as obs_metrics
from boop.settings import settings

logger = logging.getLogger(__name__)


class PresenceService:
    def __init__(
        self,
        directory: RedisUserDirectory,
        tracker: ProximityTriggerTracker,
        *,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._directory = directory
        self._tracker = tracker
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.presence_ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    async def touch(self, user_id: str) -> None:
        """Refresh the online marker and last-seen time."""
        await self._directory.mark_online(user_id, self._ttl_seconds)

    async def went_offline(self, user_id: str) -> None:
        await self._directory.mark_offline(user_id)
        cleared = await self._tracker.clear_user(user_id)
        logger.debug("user offline uid=%s pairs_cleared=%s", user_id, cleared)

    async def sweep_once(self, now: Optional[float] = None) -> int:
        """Mark users idle for longer than the TTL offline; returns how many."""
        cutoff = (now if now is not None else time.time()) - self._ttl_seconds
        stale = await self._directory.stale_online_users(cutoff)
        for user_id in stale:
            await self.went_offline(user_id)
        if stale:
            obs_metrics.PRESENCE_SWEEPER_OFFLINE.inc(len(stale))
        return len(stale)

    async def run_sweeper(self, interval_s: Optional[float] = None) -> None:
        """Periodically sweep until cancelled."""
        interval = max(1.0, float(interval_s if interval_s is not None else settings.presence_sweep_interval_seconds))
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("presence sweeper iteration failed")
                continue
            if removed:
                logger.info("presence sweeper marked %s users offline", removed)
