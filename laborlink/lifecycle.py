"""
Booking lifecycle rules.

    pending ──(provider)──────────────> confirmed ──(provider)──> completed
       │
       └──(requester or provider)───> cancelled

completed and cancelled are terminal. confirmed -> cancelled is not offered.
Every check here runs before the actor is called.
"""
import logging
from enum import Enum

from .errors import AuthorizationError, InvalidTransition, MarketplaceError, NotFoundError, NotReady, ValidationFailed
from .queries import MarketplaceQueries
from .schemas import TERMINAL_STATUSES, Booking, BookingInput, BookingStatus

logger = logging.getLogger(__name__)


class Role(str, Enum):
    requester = "requester"
    provider = "provider"


TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], frozenset] = {
    (BookingStatus.pending, BookingStatus.confirmed): frozenset({Role.provider}),
    (BookingStatus.pending, BookingStatus.cancelled): frozenset({Role.requester, Role.provider}),
    (BookingStatus.confirmed, BookingStatus.completed): frozenset({Role.provider}),
}


def roles_of(booking: Booking, principal: str | None) -> frozenset:
    roles = set()
    if principal and booking.requester == principal:
        roles.add(Role.requester)
    if principal and booking.target_laborer == principal:
        roles.add(Role.provider)
    return frozenset(roles)


def require_party(booking: Booking, principal: str | None) -> frozenset:
    roles = roles_of(booking, principal)
    if not roles:
        raise AuthorizationError("Only the requester or the booked laborer can change this booking.")
    return roles


def check_transition(booking: Booking, target: BookingStatus, principal: str | None) -> None:
    """Raise unless `principal` may move `booking` to `target`."""
    roles = require_party(booking, principal)

    if booking.status in TERMINAL_STATUSES:
        raise InvalidTransition(f"This booking is already {booking.status.value}.")

    allowed = TRANSITIONS.get((booking.status, target))
    if allowed is None:
        raise InvalidTransition(f"A {booking.status.value} booking cannot become {target.value}.")

    if roles.isdisjoint(allowed):
        raise AuthorizationError(f"Only the booked laborer can mark this booking {target.value}.")


def available_transitions(booking: Booking, principal: str | None) -> list[BookingStatus]:
    """Statuses the caller may move the booking to, in display order."""
    roles = roles_of(booking, principal)
    if not roles or booking.status in TERMINAL_STATUSES:
        return []
    return [
        to for (frm, to), allowed in TRANSITIONS.items()
        if frm == booking.status and not roles.isdisjoint(allowed)
    ]


def validate_booking_input(data: BookingInput) -> None:
    problems = []
    if not data.service_type.strip():
        problems.append("service type")
    if not data.location.strip():
        problems.append("location")
    if data.duration_hours <= 0:
        problems.append("duration (must be at least 1 hour)")
    if not data.target_laborer:
        problems.append("laborer")

    if problems:
        raise ValidationFailed(
            "Please fill in: " + ", ".join(problems) + ".",
            code="invalidFieldValues",
            form=data.to_wire(),
        )


class BookingLifecycle:
    """Role-checked booking operations on top of the query layer."""

    def __init__(self, queries: MarketplaceQueries):
        self.queries = queries

    @property
    def principal(self) -> str | None:
        return self.queries.session.principal

    async def create(self, data: BookingInput) -> int:
        validate_booking_input(data)
        try:
            return await self.queries.create_booking(data)
        except MarketplaceError as e:
            # keep what the user typed
            e.form = data.to_wire()
            raise

    async def load(self, booking_id: int, laborer_id: str | None = None, *, refresh: bool = False) -> Booking:
        """
        Find a booking on the caller's laborer record, then on `laborer_id`'s.

        Bookings live on the booked laborer's record only, so a requester
        has to say which laborer they booked. With `refresh`, cached views
        are bypassed; the other party may have moved the booking since.
        """
        if not self.queries.session.ready:
            raise NotReady()
        if refresh:
            await self.queries.refresh_booking(booking_id, laborer_id)
        result = await self.queries.get_booking_by_id(booking_id)
        if result.is_error:
            raise result.error
        if result.data is not None:
            return result.data

        if laborer_id:
            found = await self.queries.get_laborer_by_id(laborer_id)
            if found.is_error:
                raise found.error
            if found.data is not None:
                for booking in found.data.bookings:
                    if booking.id == booking_id:
                        return booking

        raise NotFoundError("Booking not found.")

    async def current(self, booking: Booking) -> Booking:
        """Re-read `booking` from the actor before acting on it."""
        return await self.load(booking.id, laborer_id=booking.target_laborer, refresh=True)

    async def transition(self, booking: Booking, target: BookingStatus) -> None:
        require_party(booking, self.principal)
        booking = await self.current(booking)
        check_transition(booking, target, self.principal)
        logger.info(
            "booking %s: %s -> %s by %s", booking.id, booking.status.value, target.value, self.principal
        )
        await self.queries.update_booking_status(booking.id, target)

    async def confirm(self, booking: Booking) -> None:
        await self.transition(booking, BookingStatus.confirmed)

    async def cancel(self, booking: Booking) -> None:
        await self.transition(booking, BookingStatus.cancelled)

    async def complete(self, booking: Booking) -> None:
        await self.transition(booking, BookingStatus.completed)

    async def update_details(self, booking: Booking, details: str) -> None:
        require_party(booking, self.principal)
        if not details.strip():
            raise ValidationFailed("Details cannot be empty.", code="emptyDetails", form={"details": details})
        try:
            booking = await self.current(booking)
            require_party(booking, self.principal)
            await self.queries.update_booking_details(booking.id, details)
        except MarketplaceError as e:
            e.form = {"details": details}
            raise
