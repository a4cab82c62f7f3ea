from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import socketio

from boop.domain.proximity.exceptions import DeliveryDropped
from boop.domain.proximity.sockets import BoopNamespace, SocketIOTransport
from boop.settings import settings


def _scope_with_user(uid: str) -> dict:
	return {"headers": [(b"x-user-id", uid.encode())]}


def _events(namespace, name: str) -> list[dict]:
	return [call.args[1] for call in namespace.emit.await_args_list if call.args[0] == name]


@pytest_asyncio.fixture
async def namespace(container):
	server = socketio.AsyncServer(async_mode="asgi")
	ns = BoopNamespace(container)
	server.register_namespace(ns)
	ns.emit = AsyncMock()
	return ns


@pytest.mark.asyncio
async def test_connect_binds_user_from_header(namespace, container, make_user):
	await make_user("alice", online=False)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_user("alice")})
	assert container.registry.user_for("sid-1") == "alice"
	assert await container.directory.is_online("alice")


@pytest.mark.asyncio
async def test_connect_binds_user_from_auth(namespace, container, make_user):
	await make_user("alice", online=False)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}}, {"uid": "alice"})
	assert container.registry.user_for("sid-1") == "alice"


@pytest.mark.asyncio
async def test_anonymous_connect_is_accepted_unbound(namespace, container):
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	assert container.registry.user_for("sid-1") is None


@pytest.mark.asyncio
async def test_update_location_success_binds_connection(namespace, container, make_user):
	await make_user("alice", "Alice", online=False)
	await namespace.trigger_event(
		"update_location", "sid-1", {"uid": "alice", "latitude": 43.6532, "longitude": -79.3832}
	)
	[payload] = _events(namespace, "location_update_success")
	assert payload["message"] == "Location updated successfully"
	assert payload["user"]["uid"] == "alice"
	assert payload["user"]["location"] == {"type": "Point", "coordinates": [-79.3832, 43.6532]}
	assert container.registry.user_for("sid-1") == "alice"
	assert await container.directory.is_online("alice")


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"data",
	[
		{"uid": "alice", "latitude": 95.0, "longitude": 0.0},
		{"uid": "alice", "latitude": "north", "longitude": 0.0},
		{"uid": "alice"},
		None,
	],
)
async def test_update_location_rejects_bad_payload(namespace, container, make_user, data):
	await make_user("alice")
	await namespace.trigger_event("update_location", "sid-1", data)
	[payload] = _events(namespace, "location_update_error")
	assert payload["error"] in {"Invalid location data", "Coordinates out of range"}
	assert await container.directory.get_location("alice") is None


@pytest.mark.asyncio
async def test_update_location_unknown_user(namespace):
	await namespace.trigger_event("update_location", "sid-1", {"uid": "ghost", "latitude": 1.0, "longitude": 1.0})
	assert _events(namespace, "location_update_error") == [{"error": "User not found"}]


@pytest.mark.asyncio
async def test_bound_connection_cannot_move_someone_else(namespace, container, make_user):
	await make_user("alice")
	await make_user("bob")
	await container.registry.register("alice", "sid-1")
	await namespace.trigger_event("update_location", "sid-1", {"uid": "bob", "latitude": 1.0, "longitude": 1.0})
	[payload] = _events(namespace, "location_update_error")
	assert payload["error"] == "Connection is bound to another user"
	assert await container.directory.get_location("bob") is None


@pytest.mark.asyncio
async def test_update_location_rate_limited(namespace, make_user, monkeypatch):
	await make_user("alice")
	monkeypatch.setattr(settings, "location_rate_limit", 1)
	for lat in (1.0, 1.001):
		await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": lat, "longitude": 1.0})
	assert _events(namespace, "location_update_error") == [{"error": "rate_limited"}]


@pytest.mark.asyncio
async def test_storage_error_is_reported_to_sender(namespace, container, make_user, monkeypatch):
	from redis.exceptions import ConnectionError as RedisConnectionError

	await make_user("alice")

	async def broken(*args, **kwargs):
		raise RedisConnectionError("down")

	monkeypatch.setattr(container.directory, "set_location", broken)
	await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": 1.0, "longitude": 1.0})
	assert _events(namespace, "location_update_error") == [{"error": "Location could not be saved"}]


@pytest.mark.asyncio
async def test_disconnect_of_last_connection_marks_offline(namespace, container, make_user):
	await make_user("alice", online=False)
	scope = {"asgi.scope": _scope_with_user("alice")}
	await namespace.trigger_event("connect", "sid-1", scope)
	await namespace.trigger_event("connect", "sid-2", scope)

	await namespace.trigger_event("disconnect", "sid-1", "client disconnect")
	assert await container.directory.is_online("alice")

	await namespace.trigger_event("disconnect", "sid-2", "client disconnect")
	assert not await container.directory.is_online("alice")
	assert container.registry.connections_for("alice") == frozenset()


@pytest.mark.asyncio
async def test_join_user_room(namespace, container, make_user):
	await make_user("alice")
	await namespace.trigger_event("join_user_room", "sid-1", {"uid": "alice"})
	assert _events(namespace, "joined_user_room") == [{"uid": "alice"}]
	assert container.registry.user_for("sid-1") == "alice"

	await namespace.trigger_event("join_user_room", "sid-2", {})
	assert _events(namespace, "join_user_room_error") == [{"error": "User ID is required"}]


@pytest.mark.asyncio
async def test_heartbeat_refreshes_bound_user(namespace, container, make_user):
	await make_user("alice")
	await container.registry.register("alice", "sid-1")
	await container.directory.mark_offline("alice")
	await namespace.trigger_event("heartbeat", "sid-1", {"uid": "alice"})
	assert await container.directory.is_online("alice")


@pytest.mark.asyncio
async def test_refresh_user(namespace, make_user):
	await make_user("alice", "Alice")
	await namespace.trigger_event("refresh_user", "sid-1", {"uid": "alice"})
	[payload] = _events(namespace, "user_refreshed")
	assert payload["user"]["name"] == "Alice"
	assert payload["user"]["online"] is True

	await namespace.trigger_event("refresh_user", "sid-1", {"uid": "ghost"})
	assert _events(namespace, "user_refresh_error") == [{"error": "User not found"}]


@pytest.mark.asyncio
async def test_manual_boop(namespace, container, make_user):
	await make_user("alice")
	await make_user("bob")
	await container.groups.create_group("Walkers", "alice", group_id="WALK01")

	await namespace.trigger_event("boop", "sid-1", {"booperUid": "alice", "boopeeUid": "bob"})
	assert _events(namespace, "boop_error") == [{"error": "Both users must be in the same group to boop"}]

	await container.groups.join_group("WALK01", "bob")
	await namespace.trigger_event("boop", "sid-1", {"booperUid": "alice", "boopeeUid": "bob"})
	[payload] = _events(namespace, "boop_success")
	assert payload["group"] == {"groupId": "WALK01", "name": "Walkers"}
	assert payload["boop"]["booper"] == "alice"


@pytest.mark.asyncio
async def test_transport_drops_events_for_closed_sessions():
	server = MagicMock()
	server.manager.is_connected.return_value = False
	server.emit = AsyncMock()
	transport = SocketIOTransport(server)
	with pytest.raises(DeliveryDropped):
		await transport.send("sid-gone", "proximity_alert", {})
	server.emit.assert_not_awaited()

	server.manager.is_connected.return_value = True
	await transport.send("sid-1", "proximity_alert", {"distance": 5})
	server.emit.assert_awaited_once_with("proximity_alert", {"distance": 5}, to="sid-1", namespace="/")


@pytest.mark.asyncio
async def test_rejected_coordinates_leave_connection_and_presence_untouched(namespace, container, make_user, monkeypatch):
	await make_user("alice", online=False)
	monkeypatch.setattr(settings, "location_rate_limit", 1)
	await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": 123.0, "longitude": 0.0})
	assert _events(namespace, "location_update_error") == [{"error": "Coordinates out of range"}]
	assert container.registry.user_for("sid-1") is None
	assert not await container.directory.is_online("alice")
	assert await container.directory.stale_online_users(float("inf")) == []

	# The rejected update did not spend the rate budget
	await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": 43.6532, "longitude": -79.3832})
	assert len(_events(namespace, "location_update_success")) == 1


@pytest.mark.asyncio
async def test_failed_update_does_not_bind_connection(namespace, container, make_user, monkeypatch):
	from redis.exceptions import ConnectionError as RedisConnectionError

	await make_user("alice", online=False)

	async def broken(*args, **kwargs):
		raise RedisConnectionError("down")

	monkeypatch.setattr(container.directory, "set_location", broken)
	await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": 1.0, "longitude": 1.0})
	assert _events(namespace, "location_update_error") == [{"error": "Location could not be saved"}]
	assert container.registry.user_for("sid-1") is None
	assert not await container.directory.is_online("alice")


@pytest.mark.asyncio
async def test_rate_limiter_outage_is_reported_to_sender(namespace, make_user, monkeypatch):
	from redis.exceptions import ConnectionError as RedisConnectionError

	from boop.domain.proximity import sockets as sockets_module

	await make_user("alice")

	async def limiter_down(*args, **kwargs):
		raise RedisConnectionError("down")

	monkeypatch.setattr(sockets_module, "rate_allow", limiter_down)
	await namespace.trigger_event("update_location", "sid-1", {"uid": "alice", "latitude": 1.0, "longitude": 1.0})
	assert _events(namespace, "location_update_error") == [{"error": "Location could not be saved"}]
