"""REST API surface for proximity features."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from boop.domain.proximity import geo
from boop.domain.proximity.container import ProximityContainer
from boop.domain.proximity.dispatcher import BOOP_SUCCESS_MESSAGE
from boop.domain.proximity.exceptions import GroupNotFound
from boop.domain.proximity.schemas import (
    BoopLogResponse,
    BoopResponse,
    GroupMembersResponse,
    ManualBoopRequest,
    NearbyUser,
    NearbyUsersResponse,
)
from boop.infra.rate_limit import enforce
from boop.settings import settings

router = APIRouter()

MANUAL_BOOP_LIMIT = 30


def get_container(request: Request) -> ProximityContainer:
    return request.app.state.container


@router.get("/users/nearby", response_model=NearbyUsersResponse)
async def nearby_users(
    latitude: float = Query(...),
    longitude: float = Query(...),
    radius: int = Query(default=1000, ge=1, le=settings.nearby_max_radius_m),
    container: ProximityContainer = Depends(get_container),
) -> NearbyUsersResponse:
    center = geo.validate(latitude, longitude)
    candidates = await container.directory.find_within_radius(center, radius)
    items = []
    for candidate in candidates:
        if not candidate.user.privacy.share_location:
            continue
        view = candidate.user.nearby_view()
        assert candidate.user.location is not None
        view["distance"] = round(geo.distance(center, candidate.user.location), 2)
        items.append(NearbyUser.model_validate(view))
    items.sort(key=lambda item: item.distance or 0.0)
    return NearbyUsersResponse(nearbyUsers=items, radius=radius)


@router.get("/groups/{group_id}/members", response_model=GroupMembersResponse)
async def group_members(
    group_id: str,
    container: ProximityContainer = Depends(get_container),
) -> GroupMembersResponse:
    group = await container.groups.get_group(group_id)
    if group is None:
        raise GroupNotFound()
    members = []
    for member_id in group.members:
        user = await container.directory.get_user(member_id)
        if user is None or user.location is None or not user.privacy.share_location:
            continue
        members.append(NearbyUser.model_validate(user.nearby_view()))
    return GroupMembersResponse(groupId=group.group_id, name=group.name, members=members)


@router.get("/groups/{group_id}/boop-log", response_model=BoopLogResponse)
async def group_boop_log(
    group_id: str,
    container: ProximityContainer = Depends(get_container),
) -> BoopLogResponse:
    group = await container.groups.get_group(group_id)
    if group is None:
        raise GroupNotFound()
    entries = await container.ledger.log_for(group_id)
    return BoopLogResponse.model_validate(
        {
            "groupId": group.group_id,
            "groupName": group.name,
            "boopLog": [entry.to_payload() for entry in entries],
        }
    )


@router.post("/boop", response_model=BoopResponse)
async def manual_boop(
    payload: ManualBoopRequest,
    container: ProximityContainer = Depends(get_container),
) -> BoopResponse:
    await enforce("boop", payload.booper_uid, limit=MANUAL_BOOP_LIMIT)
    record, group = await container.engine.manual_boop(
        payload.booper_uid,
        payload.boopee_uid,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )
    return BoopResponse(
        message=BOOP_SUCCESS_MESSAGE,
        boop=record.to_payload(),
        group={"groupId": group.group_id, "name": group.name},
    )
