import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from boop.domain.proximity.container import build_container
from boop.domain.proximity.models import Coordinates, PrivacySettings, UserRecord
from boop.main import app, container as app_container
from boop.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


class RecordingTransport:
	"""Transport double that remembers every emitted event."""

	def __init__(self) -> None:
		self.sent: list[tuple[str, str, dict]] = []
		self.failing: set[str] = set()

	async def send(self, handle: str, event: str, payload: dict) -> None:
		if handle in self.failing:
			raise RuntimeError(f"socket {handle} write failed")
		self.sent.append((handle, event, payload))

	def events_for(self, handle: str, event: str | None = None) -> list[dict]:
		return [payload for sid, name, payload in self.sent if sid == handle and (event is None or name == event)]

	def names_for(self, handle: str) -> list[str]:
		return [name for sid, name, _ in self.sent if sid == handle]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from boop.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await app_container.shutdown()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep tests on dev defaults with generous rate limits."""
	original_env = settings.environment
	original_rate = settings.location_rate_limit
	settings.environment = "dev"
	settings.location_rate_limit = 1000
	try:
		yield
	finally:
		settings.environment = original_env
		settings.location_rate_limit = original_rate


@pytest.fixture
def transport():
	return RecordingTransport()


@pytest.fixture
def container(transport):
	return build_container(transport)


@pytest.fixture
def make_user(container):
	async def _make(
		uid: str,
		name: str | None = None,
		*,
		online: bool = True,
		location: tuple[float, float] | None = None,
		**privacy,
	) -> UserRecord:
		record = UserRecord(uid=uid, name=name or uid.title(), privacy=PrivacySettings(**privacy))
		await container.directory.upsert_user(record)
		if location is not None:
			await container.directory.set_location(uid, Coordinates(latitude=location[0], longitude=location[1]))
		if online:
			await container.presence.touch(uid)
		return await container.directory.get_user(uid)

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
