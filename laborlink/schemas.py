from enum import Enum
from typing import List, Literal, Optional

from dateutil import parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer, model_validator
from pydantic.alias_generators import to_camel

from .errors import AuthorizationError, NotFoundError, UnexpectedResponse, ValidationFailed


class WireModel(BaseModel):
    """Actor payloads are camelCase; python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def to_nanos(value) -> int:
    """Accept int nanoseconds or an ISO-8601 string (the HTML datetime-local shape)."""
    if isinstance(value, bool):
        raise ValueError("timestamp must be an integer or ISO datetime")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        dt = parser.isoparse(value)
        return int(dt.timestamp()) * 1_000_000_000 + dt.microsecond * 1000
    raise ValueError("timestamp must be an integer or ISO datetime")


class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({BookingStatus.completed, BookingStatus.cancelled})


class UserRole(str, Enum):
    admin = "admin"
    user = "user"
    guest = "guest"


class AvailabilityKind(str, Enum):
    pending = "pending"
    on_job = "onJob"
    custom = "custom"
    available = "available"
    unavailable = "unavailable"


class Availability(BaseModel):
    """
    Tagged availability status.

    Wire shape:
      {"status": {"__kind__": "custom", "custom": "back at 3pm"}, "lastUpdated": 1700000000000000000}
    Only the `custom` variant carries text; the others carry null.
    """

    kind: AvailabilityKind
    custom_text: Optional[str] = None
    last_updated: int = 0

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data):
        if not isinstance(data, dict) or "status" not in data:
            return data

        status = data.get("status") or {}
        tag = status.get("__kind__")
        try:
            kind = AvailabilityKind(tag)
        except ValueError:
            raise ValueError(f"Unknown availability status: {tag!r}")

        text = status.get("custom") if kind == AvailabilityKind.custom else None
        if kind == AvailabilityKind.custom and not isinstance(text, str):
            raise ValueError("custom availability requires text")

        return {
            "kind": kind,
            "custom_text": text,
            "last_updated": data.get("lastUpdated", 0),
        }

    @model_serializer
    def _to_wire(self) -> dict:
        tag = self.kind.value
        return {
            "status": {"__kind__": tag, tag: self.custom_text if self.kind == AvailabilityKind.custom else None},
            "lastUpdated": self.last_updated,
        }


class UserProfile(WireModel):
    name: str


class Service(WireModel):
    name: str
    description: str = ""
    price: int = 0


class Booking(WireModel):
    id: int
    status: BookingStatus
    service_type: str
    requester: str
    target_laborer: str
    duration_hours: int
    details: Optional[str] = None
    date_time: int
    location: str


class BookingInput(WireModel):
    service_type: str = ""
    target_laborer: str
    duration_hours: int = 0
    details: Optional[str] = None
    date_time: int
    location: str = ""

    @field_validator("date_time", mode="before")
    @classmethod
    def _parse_date_time(cls, value):
        return to_nanos(value)


class LaborerInput(WireModel):
    name: str
    contact: str = ""
    location: str = ""
    skills: List[str] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
    availability: Availability


class LaborerData(WireModel):
    id: str
    name: str
    contact: str = ""
    mobile_number: Optional[str] = None
    location: str = ""
    skills: List[str] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
    availability: Availability
    bookings: List[Booking] = Field(default_factory=list)

    @field_validator("skills")
    @classmethod
    def _dedupe_skills(cls, value: List[str]) -> List[str]:
        # skills form a set; keep first-seen order for display
        seen = []
        for s in value:
            if s not in seen:
                seen.append(s)
        return seen


class BookingsView(BaseModel):
    incoming: List[Booking] = Field(default_factory=list)
    outgoing: List[Booking] = Field(default_factory=list)


# ---- HTTP request bodies ----

class UpdateBookingStatus(WireModel):
    status: BookingStatus
    # where to look when the booking is not on the caller's own record
    laborer_id: Optional[str] = None


class UpdateBookingDetails(WireModel):
    details: str
    laborer_id: Optional[str] = None


class AssignRole(BaseModel):
    principal: str
    role: UserRole


StatusFilter = Literal["all", "pending", "confirmed", "completed", "cancelled"]
SortOrder = Literal["newest", "oldest"]


# ---- createBooking result ----

def decode_booking_response(payload) -> int:
    """
    Decode the createBooking result variant into a booking id.

    Business-logic variants become the matching error; an unrecognized
    tag is an UnexpectedResponse rather than being ignored.
    """
    if not isinstance(payload, dict):
        raise UnexpectedResponse()

    kind = payload.get("__kind__")

    if kind == "ok":
        value = payload.get("ok")
        if isinstance(value, bool) or not isinstance(value, int):
            raise UnexpectedResponse()
        return value

    if kind == "laborerNotFound":
        raise NotFoundError("That laborer no longer exists.")

    if kind == "callerNotAuthorizedToBook":
        raise AuthorizationError("You are not allowed to book this laborer.")

    if kind == "invalidFieldValues":
        raise ValidationFailed("Please check the service, location and duration fields.")

    raise UnexpectedResponse(f"Unknown booking response: {kind!r}")
