"""Domain models used by the proximity service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Zone(str, Enum):
	"""Distance band of a pair of users."""

	BOOP = "boop"
	ALERT = "alert"
	NONE = "none"


@dataclass(frozen=True, slots=True)
class Coordinates:
	latitude: float
	longitude: float

	def to_geojson(self) -> Dict[str, Any]:
		return {"type": "Point", "coordinates": [self.longitude, self.latitude]}


@dataclass(slots=True)
class ProximitySettings:
	"""Advisory UI zone radii; they never trigger boops."""

	hot_zone: int = 50
	warm_zone: int = 200
	cold_zone: int = 1000


@dataclass(slots=True)
class PrivacySettings:
	"""Privacy preferences persisted on the user record."""

	share_location: bool = True
	show_to_friends: bool = True
	show_to_everyone: bool = True
	proximity_alerts: bool = True

	def allows_visibility(self, same_group: bool) -> bool:
		if not self.share_location:
			return False
		if self.show_to_everyone:
			return True
		return self.show_to_friends and same_group


@dataclass(slots=True)
class UserRecord:
	uid: str
	name: Optional[str] = None
	location: Optional[Coordinates] = None
	group_id: Optional[str] = None
	last_seen: Optional[datetime] = None
	location_updated_at: Optional[float] = None
	proximity: ProximitySettings = field(default_factory=ProximitySettings)
	privacy: PrivacySettings = field(default_factory=PrivacySettings)

	def summary(self) -> Dict[str, Any]:
		return {"uid": self.uid, "name": self.name}

	def nearby_view(self) -> Dict[str, Any]:
		return {
			"uid": self.uid,
			"name": self.name,
			"location": self.location.to_geojson() if self.location else None,
		}

	def public_view(self) -> Dict[str, Any]:
		view = self.nearby_view()
		view["groupId"] = self.group_id
		return view


@dataclass(slots=True)
class Candidate:
	"""Another user returned by the radius search."""

	user: UserRecord
	online: bool
	search_distance_m: Optional[float] = None

	@property
	def uid(self) -> str:
		return self.user.uid


@dataclass(slots=True)
class Group:
	group_id: str
	name: str
	members: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class BoopRecord:
	"""Immutable entry of a group's boop log."""

	booper: str
	boopee: str
	timestamp: datetime
	location: Optional[Coordinates] = None
	record_id: Optional[str] = None

	def to_payload(self) -> Dict[str, Any]:
		return {
			"booper": self.booper,
			"boopee": self.boopee,
			"timestamp": self.timestamp.isoformat(),
			"location": self.location.to_geojson() if self.location else None,
		}


@dataclass(frozen=True, slots=True)
class BoopLogEntry:
	booper: Dict[str, Any]
	boopee: Dict[str, Any]
	timestamp: datetime
	location: Optional[Coordinates] = None

	def to_payload(self) -> Dict[str, Any]:
		return {
			"booper": self.booper,
			"boopee": self.boopee,
			"timestamp": self.timestamp.isoformat(),
			"location": self.location.to_geojson() if self.location else None,
		}


@dataclass(frozen=True, slots=True)
class NearbyMatch:
	uid: str
	distance_m: float
	zone: Zone


@dataclass(slots=True)
class LocationUpdateResult:
	user: UserRecord
	changed: bool
	alerts: list[NearbyMatch] = field(default_factory=list)
	boops: list[NearbyMatch] = field(default_factory=list)
	records: list[BoopRecord] = field(default_factory=list)
