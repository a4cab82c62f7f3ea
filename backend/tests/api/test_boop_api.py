import pytest

from boop.domain.proximity.models import Coordinates, PrivacySettings, UserRecord
from boop.main import container
from boop.settings import settings


async def _user(uid: str, name: str, location=None, **privacy) -> None:
	await container.directory.upsert_user(UserRecord(uid=uid, name=name, privacy=PrivacySettings(**privacy)))
	if location is not None:
		await container.directory.set_location(uid, Coordinates(*location))


async def _walkers() -> None:
	await _user("alice", "Alice", (43.6532, -79.3832))
	await _user("bob", "Bob", (43.65325, -79.3832))
	await container.groups.create_group("Walkers", "alice", group_id="WALK01")
	await container.groups.join_group("WALK01", "bob")


@pytest.mark.asyncio
async def test_nearby_users_sorted_by_distance(api_client):
	await _user("alice", "Alice", (43.6532, -79.3832))
	await _user("bob", "Bob", (43.6540, -79.3832))
	await _user("hidden", "Hidden", (43.6533, -79.3832), share_location=False)
	await _user("far", "Far", (44.0, -79.3832))

	response = await api_client.get(
		"/users/nearby", params={"latitude": 43.6532, "longitude": -79.3832, "radius": 500}
	)
	assert response.status_code == 200
	body = response.json()
	assert body["radius"] == 500
	assert [user["uid"] for user in body["nearbyUsers"]] == ["alice", "bob"]
	assert body["nearbyUsers"][0]["distance"] == 0.0
	assert body["nearbyUsers"][1]["location"] == {"type": "Point", "coordinates": [-79.3832, 43.654]}


@pytest.mark.asyncio
async def test_nearby_users_rejects_bad_coordinates(api_client):
	response = await api_client.get("/users/nearby", params={"latitude": 120, "longitude": 0})
	assert response.status_code == 400
	assert response.json()["error"] == "Coordinates out of range"
	assert "request_id" in response.json()


@pytest.mark.asyncio
async def test_nearby_users_caps_radius(api_client):
	response = await api_client.get(
		"/users/nearby",
		params={"latitude": 0, "longitude": 0, "radius": settings.nearby_max_radius_m + 1},
	)
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_group_members(api_client):
	await _walkers()
	await _user("carol", "Carol")
	await container.groups.join_group("WALK01", "carol")

	response = await api_client.get("/groups/WALK01/members")
	assert response.status_code == 200
	body = response.json()
	assert body["groupId"] == "WALK01"
	assert [member["uid"] for member in body["members"]] == ["alice", "bob"]


@pytest.mark.asyncio
async def test_unknown_group_is_404(api_client):
	response = await api_client.get("/groups/NOPE00/boop-log")
	assert response.status_code == 404
	assert response.json()["error"] == "Group not found"


@pytest.mark.asyncio
async def test_manual_boop_then_log(api_client):
	await _walkers()
	response = await api_client.post(
		"/boop",
		json={"booperUid": "alice", "boopeeUid": "bob", "latitude": 43.65322, "longitude": -79.3832},
	)
	assert response.status_code == 200
	body = response.json()
	assert body["message"] == "Boop successful!"
	assert body["group"] == {"groupId": "WALK01", "name": "Walkers"}

	log = await api_client.get("/groups/WALK01/boop-log")
	assert log.status_code == 200
	payload = log.json()
	assert payload["groupName"] == "Walkers"
	[entry] = payload["boopLog"]
	assert entry["booper"] == {"uid": "alice", "name": "Alice"}
	assert entry["boopee"] == {"uid": "bob", "name": "Bob"}
	assert entry["location"] == {"type": "Point", "coordinates": [-79.3832, 43.65322]}


@pytest.mark.asyncio
async def test_manual_boop_out_of_range(api_client):
	await _walkers()
	response = await api_client.post(
		"/boop",
		json={"booperUid": "alice", "boopeeUid": "bob", "latitude": 43.6542, "longitude": -79.3832},
	)
	assert response.status_code == 400
	assert response.json()["error"] == "Users must be within 10 meters to boop"


@pytest.mark.asyncio
async def test_manual_boop_unknown_user(api_client):
	response = await api_client.post("/boop", json={"booperUid": "ghost", "boopeeUid": "bob"})
	assert response.status_code == 404
	assert response.json()["error"] == "One or both users not found"


@pytest.mark.asyncio
async def test_health_endpoints(api_client):
	live = await api_client.get("/health/live")
	assert live.status_code == 200
	assert live.json()["status"] == "ok"
	assert live.json()["service"] == settings.service_name
	ready = await api_client.get("/health/ready")
	assert ready.status_code == 200
	checks = ready.json()["checks"]
	assert checks["redis"]["ok"] is True
	assert checks["sockets"] == {"connected_users": 0}


@pytest.mark.asyncio
async def test_metrics_requires_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "secret")
	assert (await api_client.get("/metrics")).status_code == 403
	response = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})
	assert response.status_code == 200
	assert "boop_location_updates" in response.text
	bearer = await api_client.get("/metrics", headers={"Authorization": "Bearer secret"})
	assert bearer.status_code == 200


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client):
	response = await api_client.get("/health/live", headers={"X-Request-Id": "req-123"})
	assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_manual_boop_rate_limited(api_client, monkeypatch):
	from boop.api import proximity as proximity_api

	await _walkers()
	monkeypatch.setattr(proximity_api, "MANUAL_BOOP_LIMIT", 0)
	response = await api_client.post("/boop", json={"booperUid": "alice", "boopeeUid": "bob"})
	assert response.status_code == 429
	assert response.json()["error"] == "rate_limited"
	assert int(response.headers["Retry-After"]) >= 1


def test_app_import_installs_observability():
	import boop.main
	import boop.obs
	from boop.obs.middleware import ObservabilityMiddleware

	assert settings.obs_enabled
	assert hasattr(boop.obs.logging, "configure_logging")
	assert any(entry.cls is ObservabilityMiddleware for entry in boop.main.app.user_middleware)
