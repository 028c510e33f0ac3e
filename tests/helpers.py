import asyncio

from laborlink.errors import NotFoundError
from laborlink.schemas import (
    Availability,
    AvailabilityKind,
    Booking,
    BookingInput,
    BookingStatus,
    LaborerData,
    UserProfile,
    UserRole,
    decode_booking_response,
)

ALICE = "aaaaa-alice"
BOB = "bbbbb-bob"
CAROL = "ccccc-carol"

HOUR_NS = 3600 * 1_000_000_000


def make_booking(booking_id, *, status=BookingStatus.pending, requester=ALICE, target=BOB, date_time=0, **extra):
    return Booking(
        id=booking_id,
        status=status,
        service_type=extra.pop("service_type", "Plumbing"),
        requester=requester,
        target_laborer=target,
        duration_hours=extra.pop("duration_hours", 2),
        date_time=date_time,
        location=extra.pop("location", "Downtown"),
        **extra,
    )


def make_laborer(principal, name, location="Downtown", bookings=None):
    return LaborerData(
        id=principal,
        name=name,
        contact=f"{name.lower()}@example.com",
        location=location,
        skills=["plumbing"],
        services=[],
        availability=Availability(kind=AvailabilityKind.available, last_updated=0),
        bookings=bookings or [],
    )


def booking_input(target=BOB, **overrides):
    data = {
        "service_type": "Plumbing repair",
        "target_laborer": target,
        "duration_hours": 2,
        "date_time": 10 * HOUR_NS,
        "location": "Downtown",
    }
    data.update(overrides)
    return BookingInput(**data)


class FakeBackend:
    """In-memory stand-in for the remote actor's storage. Bookings live on the target laborer only."""

    def __init__(self):
        self.profiles: dict[str, UserProfile] = {}
        self.laborers: dict[str, LaborerData] = {}
        self.roles: dict[str, UserRole] = {}
        self.next_booking_id = 1

    def add_laborer(self, principal, name, location="Downtown"):
        self.laborers[principal] = make_laborer(principal, name, location)
        return self.laborers[principal]

    def find_booking(self, booking_id):
        for laborer in self.laborers.values():
            for b in laborer.bookings:
                if b.id == booking_id:
                    return b
        return None


class FakeActor:
    """
    Actor double bound to one caller.

    `calls` records method names in order. `failures[method]` is a list of
    exceptions raised by successive calls; `delays[method]` sleeps first.
    """

    def __init__(self, backend: FakeBackend, principal: str, ready: bool = True):
        self.backend = backend
        self.principal = principal
        self.ready = ready
        self.calls: list[str] = []
        self.failures: dict[str, list] = {}
        self.delays: dict[str, float] = {}

    async def _enter(self, method):
        self.calls.append(method)
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    def count(self, method):
        return self.calls.count(method)

    async def get_caller_user_profile(self):
        await self._enter("getCallerUserProfile")
        return self.backend.profiles.get(self.principal)

    async def save_caller_user_profile(self, profile):
        await self._enter("saveCallerUserProfile")
        self.backend.profiles[self.principal] = profile

    async def get_user_profile(self, principal):
        await self._enter("getUserProfile")
        return self.backend.profiles.get(principal)

    async def get_caller_laborer(self):
        await self._enter("getCallerLaborer")
        laborer = self.backend.laborers.get(self.principal)
        return laborer.model_copy(deep=True) if laborer else None

    async def save_caller_laborer(self, laborer_input):
        await self._enter("saveCallerLaborer")
        existing = self.backend.laborers.get(self.principal)
        self.backend.laborers[self.principal] = LaborerData(
            id=self.principal,
            bookings=existing.bookings if existing else [],
            **laborer_input.model_dump(),
        )

    async def get_laborer_by_id(self, laborer_id):
        await self._enter("getLaborerById")
        laborer = self.backend.laborers.get(laborer_id)
        return laborer.model_copy(deep=True) if laborer else None

    async def get_laborers_by_neighborhood(self, neighborhood):
        await self._enter("getLaborersByNeighborhood")
        return [l.model_copy(deep=True) for l in self.backend.laborers.values() if l.location == neighborhood]

    async def get_bookables_near_location(self, location, radius):
        await self._enter("getBookablesNearLocation")
        return [l.model_copy(deep=True) for l in self.backend.laborers.values() if l.location == location]

    async def create_booking(self, data: BookingInput):
        await self._enter("createBooking")
        if not data.service_type or not data.location or data.duration_hours <= 0:
            return decode_booking_response({"__kind__": "invalidFieldValues", "invalidFieldValues": None})
        laborer = self.backend.laborers.get(data.target_laborer)
        if laborer is None:
            return decode_booking_response({"__kind__": "laborerNotFound", "laborerNotFound": None})

        booking_id = self.backend.next_booking_id
        self.backend.next_booking_id += 1
        laborer.bookings.append(Booking(
            id=booking_id,
            status=BookingStatus.pending,
            service_type=data.service_type,
            requester=self.principal,
            target_laborer=data.target_laborer,
            duration_hours=data.duration_hours,
            details=data.details,
            date_time=data.date_time,
            location=data.location,
        ))
        return decode_booking_response({"__kind__": "ok", "ok": booking_id})

    async def update_booking_status(self, booking_id, status):
        await self._enter("updateBookingStatus")
        booking = self.backend.find_booking(booking_id)
        if booking is None:
            raise NotFoundError()
        booking.status = status

    async def update_booking_details(self, booking_id, details):
        await self._enter("updateBookingDetails")
        booking = self.backend.find_booking(booking_id)
        if booking is None:
            raise NotFoundError()
        booking.details = details

    async def assign_caller_user_role(self, principal, role):
        await self._enter("assignCallerUserRole")
        self.backend.roles[principal] = role

    async def get_caller_user_role(self):
        await self._enter("getCallerUserRole")
        return self.backend.roles.get(self.principal, UserRole.user)

    async def is_caller_admin(self):
        await self._enter("isCallerAdmin")
        return self.backend.roles.get(self.principal) == UserRole.admin
