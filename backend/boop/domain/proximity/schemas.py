"""Pydantic schemas for proximity socket events and REST endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UpdateLocationPayload(BaseModel):
	"""Inbound ``update_location``; range checks happen in the engine."""

	uid: str = Field(..., min_length=1)
	latitude: float
	longitude: float


class UserRefPayload(BaseModel):
	"""Inbound ``join_user_room`` / ``heartbeat`` / ``refresh_user``."""

	uid: Optional[str] = Field(default=None, min_length=1)


class ManualBoopRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	booper_uid: str = Field(..., min_length=1, alias="booperUid")
	boopee_uid: str = Field(..., min_length=1, alias="boopeeUid")
	latitude: Optional[float] = None
	longitude: Optional[float] = None


class GeoPoint(BaseModel):
	type: str = "Point"
	coordinates: List[float]


class NearbyUser(BaseModel):
	uid: str
	name: Optional[str] = None
	location: Optional[GeoPoint] = None
	distance: Optional[float] = Field(default=None, ge=0)


class NearbyUsersResponse(BaseModel):
	nearbyUsers: List[NearbyUser]
	radius: int


class GroupMembersResponse(BaseModel):
	groupId: str
	name: str
	members: List[NearbyUser]


class BoopParticipant(BaseModel):
	uid: str
	name: Optional[str] = None


class BoopLogItem(BaseModel):
	booper: BoopParticipant
	boopee: BoopParticipant
	timestamp: str
	location: Optional[GeoPoint] = None


class BoopLogResponse(BaseModel):
	groupId: str
	groupName: str
	boopLog: List[BoopLogItem]


class BoopResponse(BaseModel):
	message: str
	boop: Dict[str, Any]
	group: Dict[str, Any]
