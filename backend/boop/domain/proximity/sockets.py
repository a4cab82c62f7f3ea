"""Socket.IO namespace for location updates and boops."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import socketio
from pydantic import ValidationError
from redis.exceptions import RedisError

from boop.domain.proximity import geo
from boop.domain.proximity.container import ProximityContainer
from boop.domain.proximity.dispatcher import BOOP_SUCCESS_MESSAGE
from boop.domain.proximity.exceptions import DeliveryDropped, InvalidLocation, ProximityError
from boop.domain.proximity.schemas import ManualBoopRequest, UpdateLocationPayload, UserRefPayload
from boop.infra.rate_limit import allow as rate_allow
from boop.obs import metrics as obs_metrics
from boop.obs.logging import bind_context, reset_context
from boop.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "/"
STORAGE_ERROR = "Location could not be saved"
RATE_LIMITED = "rate_limited"


def _header(scope: dict, name: str) -> Optional[str]:
    target = name.encode().lower()
    for key, value in scope.get("headers", []):
        if key.lower() == target:
            return value.decode()
    return None


def _handshake_uid(environ: dict, auth: Optional[dict]) -> Optional[str]:
    if isinstance(auth, dict) and auth.get("uid"):
        return str(auth["uid"])
    value = environ.get("HTTP_X_USER_ID")
    if value:
        return str(value)
    scope = environ.get("asgi.scope") or {}
    return _header(scope, "x-user-id")


class SocketIOTransport:
    """``Transport`` that emits to a single Socket.IO session."""

    def __init__(self, server: socketio.AsyncServer, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._server = server
        self._namespace = namespace

    async def send(self, handle: str, event: str, payload: Dict[str, Any]) -> None:
        if not self._server.manager.is_connected(handle, self._namespace):
            raise DeliveryDropped(f"{event}: connection {handle} is gone")
        await self._server.emit(event, payload, to=handle, namespace=self._namespace)


class BoopNamespace(socketio.AsyncNamespace):
    def __init__(self, container: ProximityContainer, namespace: str = DEFAULT_NAMESPACE) -> None:
        super().__init__(namespace)
        self.container = container

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
        obs_metrics.socket_connected(self.namespace)
        user_id = _handshake_uid(environ, auth)
        if user_id and await self.container.directory.get_user(user_id) is not None:
            await self._bind(sid, user_id)
        logger.info("socket connect sid=%s user=%s", sid, user_id or "-")

    async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
        obs_metrics.socket_disconnected(self.namespace)
        user_id = await self.container.registry.unregister(sid)
        if user_id is not None and not self.container.registry.is_connected(user_id):
            await self.container.presence.went_offline(user_id)
        obs_metrics.set_connected_users(self.container.registry.connected_users())
        logger.info("socket disconnect sid=%s user=%s reason=%s", sid, user_id or "-", reason or "-")

    async def on_update_location(self, sid: str, data: Optional[dict]) -> None:
        obs_metrics.socket_event(self.namespace, "update_location")
        try:
            payload = UpdateLocationPayload.model_validate(data or {})
            geo.validate(payload.latitude, payload.longitude)
        except ValidationError:
            obs_metrics.inc_location_update("invalid")
            await self._reply(sid, "location_update_error", {"error": InvalidLocation.reason})
            return
        except InvalidLocation as exc:
            obs_metrics.inc_location_update("invalid")
            await self._reply(sid, "location_update_error", {"error": exc.reason})
            return
        bound = self.container.registry.user_for(sid)
        if bound is not None and bound != payload.uid:
            await self._reply(sid, "location_update_error", {"error": "Connection is bound to another user"})
            return
        log_ctx = bind_context(user_id=payload.uid, sid=sid)
        registered = False
        try:
            allowed = await rate_allow(
                "update_location",
                payload.uid,
                limit=settings.location_rate_limit,
                window_seconds=settings.location_rate_window_seconds,
            )
            if not allowed:
                obs_metrics.inc_location_update("rate_limited")
                await self._reply(sid, "location_update_error", {"error": RATE_LIMITED})
                return
            if bound is None:
                if await self.container.directory.get_user(payload.uid) is None:
                    await self._reply(sid, "location_update_error", {"error": "User not found"})
                    return
                # Registered up front so the sender receives its own fan-out
                await self.container.registry.register(payload.uid, sid)
                registered = True
            result = await self.container.engine.handle_location_update(
                payload.uid, payload.latitude, payload.longitude
            )
            await self.container.presence.touch(payload.uid)
        except ProximityError as exc:
            await self._unregister_failed(sid, registered)
            await self._reply(sid, "location_update_error", {"error": exc.reason})
            return
        except RedisError:
            logger.exception("location update failed uid=%s", payload.uid)
            await self._unregister_failed(sid, registered)
            await self._reply(sid, "location_update_error", {"error": STORAGE_ERROR})
            return
        finally:
            reset_context(log_ctx)
        obs_metrics.set_connected_users(self.container.registry.connected_users())
        await self._reply(
            sid,
            "location_update_success",
            {"message": "Location updated successfully", "user": result.user.nearby_view()},
        )

    async def on_join_user_room(self, sid: str, data: Optional[dict]) -> None:
        obs_metrics.socket_event(self.namespace, "join_user_room")
        try:
            payload = UserRefPayload.model_validate(data or {})
        except ValidationError:
            payload = UserRefPayload()
        if not payload.uid:
            await self._reply(sid, "join_user_room_error", {"error": "User ID is required"})
            return
        if await self.container.directory.get_user(payload.uid) is None:
            await self._reply(sid, "join_user_room_error", {"error": "User not found"})
            return
        previous = self.container.registry.user_for(sid)
        await self._bind(sid, payload.uid)
        if previous is not None and previous != payload.uid and not self.container.registry.is_connected(previous):
            await self.container.presence.went_offline(previous)
        await self._reply(sid, "joined_user_room", {"uid": payload.uid})

    async def on_heartbeat(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "heartbeat")
        user_id = self.container.registry.user_for(sid)
        if user_id is None:
            return
        await self.container.presence.touch(user_id)

    async def on_refresh_user(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "refresh_user")
        try:
            payload = UserRefPayload.model_validate(data or {})
        except ValidationError:
            payload = UserRefPayload()
        user_id = payload.uid or self.container.registry.user_for(sid)
        if not user_id:
            await self._reply(sid, "user_refresh_error", {"error": "User ID is required"})
            return
        user = await self.container.directory.get_user(user_id)
        if user is None:
            await self._reply(sid, "user_refresh_error", {"error": "User not found"})
            return
        view = user.public_view()
        view["online"] = await self.container.directory.is_online(user_id)
        view["lastSeen"] = user.last_seen.isoformat() if user.last_seen else None
        await self._reply(sid, "user_refreshed", {"user": view})

    async def on_boop(self, sid: str, data: Optional[dict]) -> None:
        obs_metrics.socket_event(self.namespace, "boop")
        try:
            payload = ManualBoopRequest.model_validate(data or {})
        except ValidationError:
            await self._reply(sid, "boop_error", {"error": "Both booperUid and boopeeUid are required"})
            return
        bound = self.container.registry.user_for(sid)
        if bound is not None and bound != payload.booper_uid:
            await self._reply(sid, "boop_error", {"error": "Connection is bound to another user"})
            return
        try:
            record, group = await self.container.engine.manual_boop(
                payload.booper_uid,
                payload.boopee_uid,
                latitude=payload.latitude,
                longitude=payload.longitude,
            )
        except ProximityError as exc:
            await self._reply(sid, "boop_error", {"error": exc.reason})
            return
        except RedisError:
            logger.exception("manual boop failed booper=%s", payload.booper_uid)
            await self._reply(sid, "boop_error", {"error": "Boop could not be saved"})
            return
        await self._reply(
            sid,
            "boop_success",
            {
                "message": BOOP_SUCCESS_MESSAGE,
                "boop": record.to_payload(),
                "group": {"groupId": group.group_id, "name": group.name},
            },
        )

    async def _bind(self, sid: str, user_id: str) -> None:
        await self.container.registry.register(user_id, sid)
        await self.container.presence.touch(user_id)
        obs_metrics.set_connected_users(self.container.registry.connected_users())

    async def _unregister_failed(self, sid: str, registered: bool) -> None:
        if registered:
            await self.container.registry.unregister(sid)

    async def _reply(self, sid: str, event: str, payload: Dict[str, Any]) -> None:
        await self.emit(event, payload, to=sid)
