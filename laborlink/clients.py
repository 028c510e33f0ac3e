import logging

import httpx
from pydantic import ValidationError

from .config import ACTOR_URL, ACTOR_TIMEOUT
from .errors import (
    AuthorizationError,
    NotFoundError,
    TransportError,
    UnexpectedResponse,
    ValidationFailed,
)
from .schemas import (
    BookingInput,
    BookingStatus,
    LaborerData,
    LaborerInput,
    UserProfile,
    UserRole,
    decode_booking_response,
)

logger = logging.getLogger(__name__)


def _base_headers(request_id: str | None, token: str | None):
    headers = {}
    if request_id:
        headers["X-Request-Id"] = request_id
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_for_status(status: int, detail: str):
    if status in (401, 403):
        return AuthorizationError()
    if status == 404:
        return NotFoundError()
    if status in (400, 422):
        return ValidationFailed(code="invalidFieldValues")
    if status >= 500:
        return TransportError()
    logger.warning("actor returned unexpected status %s: %s", status, detail[:200])
    return UnexpectedResponse()


def _decode(model, payload):
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning("could not decode %s: %s", model.__name__, e)
        raise UnexpectedResponse()


def _decode_optional(model, payload):
    if payload is None:
        return None
    return _decode(model, payload)


def _decode_list(model, payload):
    if not isinstance(payload, list):
        raise UnexpectedResponse()
    return [_decode(model, item) for item in payload]


class ActorClient:
    """
    Remote backend actor reached over HTTP.

    Every method is `POST {base_url}/rpc/{method}` with body `{"args": [...]}`.
    The JSON response body is the return value (null for absent/void).
    Errors come back as the taxonomy in errors.py.
    """

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = ACTOR_URL,
        timeout: float = ACTOR_TIMEOUT,
        request_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_id = request_id
        self._transport = transport

    @property
    def ready(self) -> bool:
        return bool(self.token)

    async def _call(self, method: str, *args):
        url = f"{self.base_url}/rpc/{method}"
        headers = _base_headers(self.request_id, self.token)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json={"args": list(args)}, headers=headers)
                resp.raise_for_status()
                if not resp.content:
                    return None
                return resp.json()
        except httpx.TimeoutException:
            logger.warning("timeout calling actor method %s", method)
            raise TransportError("The server took too long to answer. Please try again.")
        except httpx.HTTPStatusError as e:
            # actor responded but with an error code
            raise _error_for_status(e.response.status_code, e.response.text)
        except httpx.TransportError as e:
            logger.warning("transport error calling actor method %s: %s", method, e)
            raise TransportError()
        except ValueError:
            # body was not JSON
            raise UnexpectedResponse()

    # -------- USER PROFILE --------

    async def get_caller_user_profile(self) -> UserProfile | None:
        return _decode_optional(UserProfile, await self._call("getCallerUserProfile"))

    async def save_caller_user_profile(self, profile: UserProfile) -> None:
        await self._call("saveCallerUserProfile", profile.to_wire())

    async def get_user_profile(self, principal: str) -> UserProfile | None:
        return _decode_optional(UserProfile, await self._call("getUserProfile", principal))

    # -------- LABORERS --------

    async def get_caller_laborer(self) -> LaborerData | None:
        return _decode_optional(LaborerData, await self._call("getCallerLaborer"))

    async def save_caller_laborer(self, laborer_input: LaborerInput) -> None:
        await self._call("saveCallerLaborer", laborer_input.to_wire())

    async def get_laborer_by_id(self, laborer_id: str) -> LaborerData | None:
        return _decode_optional(LaborerData, await self._call("getLaborerById", laborer_id))

    async def get_laborers_by_neighborhood(self, neighborhood: str) -> list[LaborerData]:
        return _decode_list(LaborerData, await self._call("getLaborersByNeighborhood", neighborhood))

    async def get_bookables_near_location(self, location: str, radius: int) -> list[LaborerData]:
        return _decode_list(LaborerData, await self._call("getBookablesNearLocation", location, radius))

    # -------- BOOKINGS --------

    async def create_booking(self, booking_input: BookingInput) -> int:
        return decode_booking_response(await self._call("createBooking", booking_input.to_wire()))

    async def update_booking_status(self, booking_id: int, status: BookingStatus) -> None:
        await self._call("updateBookingStatus", booking_id, status.value)

    async def update_booking_details(self, booking_id: int, details: str) -> None:
        await self._call("updateBookingDetails", booking_id, details)

    # -------- ROLES --------

    async def assign_caller_user_role(self, principal: str, role: UserRole) -> None:
        await self._call("assignCallerUserRole", principal, role.value)

    async def get_caller_user_role(self) -> UserRole:
        payload = await self._call("getCallerUserRole")
        try:
            return UserRole(payload)
        except ValueError:
            raise UnexpectedResponse()

    async def is_caller_admin(self) -> bool:
        payload = await self._call("isCallerAdmin")
        if not isinstance(payload, bool):
            raise UnexpectedResponse()
        return payload
