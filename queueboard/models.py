"""Queue board data model and wire schemas.

Best Practices:
- str Enum for lanes so values travel unchanged over JSON
- Frozen pydantic models: lane snapshots can be handed out without copying
- camelCase on the wire, snake_case in Python (both accepted on input)
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time, used for lane transition stamps."""
    return datetime.now(timezone.utc)


class Lane(str, Enum):
    """Board lanes, in front-desk flow order."""
    WAITING = "waiting"
    IN_SERVICE = "in_service"
    COMPLETED = "completed"

    @classmethod
    def _missing_(cls, value):
        # Accept "InService", "in-service", "IN SERVICE", ...
        if isinstance(value, str):
            key = "".join(ch for ch in value.lower() if ch.isalpha())
            for member in cls:
                if member.value.replace("_", "") == key:
                    return member
        return None

    @property
    def display_name(self) -> str:
        return LANE_TITLES[self]


LANE_TITLES: Dict[Lane, str] = {
    Lane.WAITING: "Waiting",
    Lane.IN_SERVICE: "In Service",
    Lane.COMPLETED: "Completed",
}


# Backend business rules for lane changes.
# Pattern: current lane -> [lanes a record may move to]
VALID_TRANSITIONS: Dict[Lane, List[Lane]] = {
    Lane.WAITING: [Lane.IN_SERVICE],
    Lane.IN_SERVICE: [Lane.COMPLETED, Lane.WAITING],  # finished, or sent back
    Lane.COMPLETED: [Lane.IN_SERVICE],  # reopened
}


def validate_transition(current: Lane, intended: Lane, allow_skip: bool = False) -> bool:
    """
    Validate a lane change against the clinic's business rules.

    Reorders inside one lane are always valid. Waiting -> Completed skips
    the service step and is only valid when ``allow_skip`` is set.

    Example:
        >>> validate_transition(Lane.WAITING, Lane.IN_SERVICE)
        True
        >>> validate_transition(Lane.WAITING, Lane.COMPLETED)
        False
    """
    if current == intended:
        return True
    if allow_skip and current == Lane.WAITING and intended == Lane.COMPLETED:
        return True
    return intended in VALID_TRANSITIONS.get(current, [])


class WireModel(BaseModel):
    """Base for everything that crosses the REST/push boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class VisitRecord(WireModel):
    """A patient's single pass through the queue."""
    id: str = Field(..., min_length=1, description="Stable visit identifier")
    patient_name: str = Field(..., min_length=1, max_length=200)
    service_label: str = Field(default="", max_length=200)
    assigned_staff: str = Field(default="", max_length=200)
    scheduled_time: str = Field(
        default="",
        pattern=r"^(|([01]\d|2[0-3]):[0-5]\d)$",
        description="Booked time of day, HH:MM",
        examples=["10:30"],
    )
    lane: Lane = Lane.WAITING
    entered_lane_at: datetime = Field(default_factory=utcnow)

    @field_validator("entered_lane_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def moved_to(self, lane: Lane, at: datetime) -> "VisitRecord":
        """Copy of this record placed in ``lane`` as of ``at``."""
        return self.model_copy(update={"lane": lane, "entered_lane_at": at})


class Ack(WireModel):
    """Backend confirmation of a pushed change."""
    success: bool = True
    record_id: Optional[str] = None
    lane: Optional[Lane] = None
    message: Optional[str] = None


class TransitionRequest(WireModel):
    record_id: str = Field(..., min_length=1)
    from_lane: Lane
    to_lane: Lane


class OrderRequest(WireModel):
    record_ids: List[str]


class CheckInRequest(WireModel):
    """Arrival check-in; the backend assigns id and timestamps when omitted."""
    patient_name: str = Field(..., min_length=1, max_length=200)
    service_label: str = Field(default="", max_length=200)
    assigned_staff: str = Field(default="", max_length=200)
    scheduled_time: str = Field(default="", pattern=r"^(|([01]\d|2[0-3]):[0-5]\d)$")
    id: Optional[str] = None


class LaneUpdate(WireModel):
    """Authoritative full-lane payload delivered over the push channel."""
    lane: Lane
    records: List[VisitRecord]
