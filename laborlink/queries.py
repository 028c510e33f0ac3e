import logging
from typing import List, Optional

from .config import BOOKING_SETTLE_DELAY, CREATE_BOOKING_TIMEOUT
from .errors import BookingTimeout, NotReady
from .filters import split_bookings
from .query import Mutation, Query, QueryClient, QueryResult, QueryScope
from .retry import DEFAULT_RETRY, NO_RETRY
from .schemas import (
    Booking,
    BookingInput,
    BookingsView,
    BookingStatus,
    LaborerData,
    LaborerInput,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)

# ---- cache keys ----

CURRENT_USER_PROFILE = ("currentUserProfile",)
CALLER_LABORER = ("callerLaborer",)
LABORERS = ("laborers",)
BOOKINGS = ("bookings",)
ROLE = ("role",)
IS_ADMIN = ("isAdmin",)


def user_profile_key(principal: str):
    return ("userProfile", principal)


def laborer_key(laborer_id: str):
    return ("laborers", "id", laborer_id)


def neighborhood_key(neighborhood: str):
    return ("laborers", "neighborhood", neighborhood)


def location_key(location: str, radius: int):
    return ("laborers", "location", location, str(radius))


def booking_key(booking_id: int):
    return ("booking", booking_id)


def _booking_prefixes(booking_id: int, *_):
    return [CALLER_LABORER, LABORERS, BOOKINGS, booking_key(booking_id)]


class Session:
    """
    Who is calling and how to reach the actor.

    Queries stay disabled until the session is ready: an authenticated
    principal plus an actor able to make calls.
    """

    def __init__(self, principal: str | None, actor, client: QueryClient):
        self.principal = principal
        self.actor = actor
        self.client = client

    @property
    def ready(self) -> bool:
        return bool(self.principal) and self.actor is not None and bool(getattr(self.actor, "ready", True))


class MarketplaceQueries:
    """Named queries and mutations over the actor, bound to one scope."""

    def __init__(
        self,
        session: Session,
        scope: QueryScope,
        *,
        booking_timeout: float = CREATE_BOOKING_TIMEOUT,
        settle_delay: float = BOOKING_SETTLE_DELAY,
    ):
        self.session = session
        self.scope = scope
        actor = session.actor

        self.save_profile_mutation = Mutation(
            lambda profile: actor.save_caller_user_profile(profile),
            invalidates=[CURRENT_USER_PROFILE],
            label="saveCallerUserProfile",
        )
        self.save_laborer_mutation = Mutation(
            lambda laborer_input: actor.save_caller_laborer(laborer_input),
            invalidates=[CALLER_LABORER],
            label="saveCallerLaborer",
        )
        self.create_booking_mutation = Mutation(
            lambda booking_input: actor.create_booking(booking_input),
            invalidates=[CALLER_LABORER, LABORERS, BOOKINGS],
            settle_delay=settle_delay,
            timeout=booking_timeout,
            timeout_error=BookingTimeout,
            retry=NO_RETRY,
            label="createBooking",
        )
        self.update_status_mutation = Mutation(
            lambda booking_id, status: actor.update_booking_status(booking_id, status),
            invalidates=_booking_prefixes,
            label="updateBookingStatus",
        )
        self.update_details_mutation = Mutation(
            lambda booking_id, details: actor.update_booking_details(booking_id, details),
            invalidates=_booking_prefixes,
            label="updateBookingDetails",
        )
        self.assign_role_mutation = Mutation(
            lambda principal, role: actor.assign_caller_user_role(principal, role),
            invalidates=[ROLE, IS_ADMIN],
            label="assignCallerUserRole",
        )

    def _require_ready(self):
        if not self.session.ready:
            raise NotReady()

    async def _fetch(self, key, fn, result_type, *, enabled: bool = True, retry=DEFAULT_RETRY) -> QueryResult:
        query = Query(
            key=key,
            fn=fn,
            result_type=result_type,
            enabled=self.session.ready and enabled,
            retry=retry,
        )
        return await self.scope.fetch(query)

    # -------- USER PROFILE --------

    async def get_caller_user_profile(self) -> QueryResult:
        # gates first-run profile setup; a failure must show at once, so no retry
        return await self._fetch(
            CURRENT_USER_PROFILE,
            lambda: self.session.actor.get_caller_user_profile(),
            Optional[UserProfile],
            retry=NO_RETRY,
        )

    async def save_caller_user_profile(self, profile: UserProfile) -> None:
        self._require_ready()
        await self.save_profile_mutation.run(self.scope, profile)

    async def get_user_profile(self, principal: str | None) -> QueryResult:
        return await self._fetch(
            user_profile_key(principal),
            lambda: self.session.actor.get_user_profile(principal),
            Optional[UserProfile],
            enabled=bool(principal),
        )

    # -------- LABORERS --------

    async def get_caller_laborer(self) -> QueryResult:
        return await self._fetch(CALLER_LABORER, lambda: self.session.actor.get_caller_laborer(), Optional[LaborerData])

    async def save_caller_laborer(self, laborer_input: LaborerInput) -> None:
        self._require_ready()
        await self.save_laborer_mutation.run(self.scope, laborer_input)

    async def get_laborer_by_id(self, laborer_id: str) -> QueryResult:
        return await self._fetch(
            laborer_key(laborer_id),
            lambda: self.session.actor.get_laborer_by_id(laborer_id),
            Optional[LaborerData],
            enabled=bool(laborer_id),
        )

    async def get_laborers_by_neighborhood(self, neighborhood: str) -> QueryResult:
        return await self._fetch(
            neighborhood_key(neighborhood),
            lambda: self.session.actor.get_laborers_by_neighborhood(neighborhood),
            List[LaborerData],
            enabled=bool(neighborhood),
        )

    async def get_bookables_near_location(self, location: str, radius: int) -> QueryResult:
        return await self._fetch(
            location_key(location, radius),
            lambda: self.session.actor.get_bookables_near_location(location, radius),
            List[LaborerData],
            enabled=bool(location),
        )

    # -------- BOOKINGS --------

    async def refresh(self, *prefixes) -> None:
        """Mark entries stale so the next read goes to the actor."""
        await self.scope.client.invalidate(prefixes, self.scope, refetch=False)

    async def refresh_booking(self, booking_id: int, laborer_id: str | None = None) -> None:
        prefixes = [booking_key(booking_id)]
        if laborer_id:
            prefixes.append(laborer_key(laborer_id))
        await self.refresh(*prefixes)

    async def _caller_bookings(self) -> list[Booking]:
        # the backend keeps bookings on the target laborer's record only
        laborer = await self.session.actor.get_caller_laborer()
        return list(laborer.bookings) if laborer else []

    async def get_bookings(self) -> QueryResult:
        async def load():
            return split_bookings(await self._caller_bookings(), self.session.principal)

        return await self._fetch(BOOKINGS, load, BookingsView)

    async def get_booking_by_id(self, booking_id: int) -> QueryResult:
        async def load():
            for booking in await self._caller_bookings():
                if booking.id == booking_id:
                    return booking
            return None

        return await self._fetch(booking_key(booking_id), load, Optional[Booking])

    async def create_booking(self, booking_input: BookingInput) -> int:
        self._require_ready()
        booking_id = await self.create_booking_mutation.run(self.scope, booking_input)
        logger.info("booking %s created for laborer %s", booking_id, booking_input.target_laborer)
        return booking_id

    async def update_booking_status(self, booking_id: int, status: BookingStatus) -> None:
        self._require_ready()
        await self.update_status_mutation.run(self.scope, booking_id, status)

    async def update_booking_details(self, booking_id: int, details: str) -> None:
        self._require_ready()
        await self.update_details_mutation.run(self.scope, booking_id, details)

    # -------- ROLES --------

    async def get_caller_user_role(self) -> QueryResult:
        return await self._fetch(ROLE, lambda: self.session.actor.get_caller_user_role(), UserRole)

    async def is_caller_admin(self) -> QueryResult:
        return await self._fetch(IS_ADMIN, lambda: self.session.actor.is_caller_admin(), bool)

    async def assign_caller_user_role(self, principal: str, role: UserRole) -> None:
        self._require_ready()
        await self.assign_role_mutation.run(self.scope, principal, role)
