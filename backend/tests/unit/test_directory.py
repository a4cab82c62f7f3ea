import time

import pytest

from boop.domain.proximity.directory import GEO_KEY, online_key
from boop.domain.proximity.exceptions import UserNotFound
from boop.domain.proximity.models import Coordinates

TORONTO = Coordinates(latitude=43.6532, longitude=-79.3832)


@pytest.mark.asyncio
async def test_new_user_has_defaults(container, make_user):
    user = await make_user("alice", "Alice", online=False)
    assert user.location is None
    assert user.group_id is None
    assert (user.proximity.hot_zone, user.proximity.warm_zone, user.proximity.cold_zone) == (50, 200, 1000)
    assert user.privacy.share_location and user.privacy.proximity_alerts


@pytest.mark.asyncio
async def test_set_location_unknown_user(container):
    with pytest.raises(UserNotFound):
        await container.directory.set_location("ghost", TORONTO)


@pytest.mark.asyncio
async def test_set_location_persists_and_indexes(container, make_user, fake_redis):
    await make_user("alice")
    assert await container.directory.set_location("alice", TORONTO)
    assert await container.directory.get_location("alice") == TORONTO
    assert await fake_redis.geopos(GEO_KEY, "alice") != [None]


@pytest.mark.asyncio
async def test_identical_resubmission_is_not_rewritten(container, make_user):
    await make_user("alice")
    assert await container.directory.set_location("alice", TORONTO, dedup_window=5)
    assert not await container.directory.set_location("alice", TORONTO, dedup_window=5)
    moved = Coordinates(latitude=TORONTO.latitude + 0.0001, longitude=TORONTO.longitude)
    assert await container.directory.set_location("alice", moved, dedup_window=5)


@pytest.mark.asyncio
async def test_polar_location_is_stored_but_not_indexed(container, make_user, fake_redis):
    await make_user("alice")
    polar = Coordinates(latitude=89.5, longitude=10.0)
    await container.directory.set_location("alice", polar)
    assert await container.directory.get_location("alice") == polar
    assert await fake_redis.zscore(GEO_KEY, "alice") is None
    assert await container.directory.find_within_radius(polar, 1000) == []


@pytest.mark.asyncio
async def test_find_within_radius_reports_online_state(container, make_user):
    await make_user("alice", location=(43.6532, -79.3832))
    await make_user("bob", location=(43.6533, -79.3832))
    await make_user("carol", online=False, location=(43.6534, -79.3832))
    await make_user("far", location=(43.7, -79.3832))

    candidates = await container.directory.find_within_radius(TORONTO, 100, excluding="alice")
    assert [candidate.uid for candidate in candidates] == ["bob", "carol"]
    assert [candidate.online for candidate in candidates] == [True, False]


@pytest.mark.asyncio
async def test_stale_geo_members_are_dropped(container, make_user, fake_redis):
    await make_user("alice", location=(43.6532, -79.3832))
    await fake_redis.geoadd(GEO_KEY, [-79.3832, 43.6532, "deleted-user"])
    candidates = await container.directory.find_within_radius(TORONTO, 50)
    assert [candidate.uid for candidate in candidates] == ["alice"]
    assert await fake_redis.zscore(GEO_KEY, "deleted-user") is None


@pytest.mark.asyncio
async def test_online_marker_and_sweeper_index(container, make_user, fake_redis):
    await make_user("alice", online=False)
    await container.directory.mark_online("alice", 60)
    assert await container.directory.is_online("alice")
    assert 0 < await fake_redis.ttl(online_key("alice")) <= 60
    assert await container.directory.stale_online_users(time.time() + 1) == ["alice"]

    await container.directory.mark_offline("alice")
    assert not await container.directory.is_online("alice")
    assert await container.directory.stale_online_users(time.time() + 1) == []


@pytest.mark.asyncio
async def test_mark_online_ignores_unknown_user(container, fake_redis):
    await container.directory.mark_online("ghost", 60)
    assert await fake_redis.exists("user:ghost") == 0
    assert not await container.directory.is_online("ghost")


@pytest.mark.asyncio
async def test_proximity_alerts_flag(container, make_user):
    await make_user("alice", proximity_alerts=False)
    await make_user("bob")
    assert not await container.directory.proximity_alerts_enabled("alice")
    assert await container.directory.proximity_alerts_enabled("bob")
    assert not await container.directory.proximity_alerts_enabled("ghost")


@pytest.mark.asyncio
async def test_get_names_skips_missing_users(container, make_user):
    await make_user("alice", "Alice")
    assert await container.directory.get_names(["alice", "ghost", "alice"]) == {"alice": "Alice"}
