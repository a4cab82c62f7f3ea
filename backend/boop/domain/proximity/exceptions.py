"""Domain-level exceptions for proximity and boops."""

from __future__ import annotations


class ProximityError(Exception):
	"""Base class for proximity feature errors.

	``reason`` is the human-readable text sent back in ``*_error`` events.
	"""

	reason: str = "Proximity error"
	status_code: int = 400

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class InvalidLocation(ProximityError):
	reason = "Invalid location data"


class UserNotFound(ProximityError):
	reason = "User not found"
	status_code = 404


class GroupNotFound(ProximityError):
	reason = "Group not found"
	status_code = 404


class NotInSameGroup(ProximityError):
	reason = "Both users must be in the same group to boop"


class OutOfBoopRange(ProximityError):
	reason = "Users must be within 10 meters to boop"


class AlreadyInGroup(ProximityError):
	reason = "User is already in a group. Leave current group first."


class DeliveryDropped(ProximityError):
	"""Recorded when an event has no live connection to go to.

	Never raised to the sender; the dispatcher logs it and moves on.
	"""

	reason = "Delivery dropped"
