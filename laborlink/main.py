from typing import Literal

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .deps import get_lifecycle, get_queries, get_registry, ClientRegistry
from .errors import MarketplaceError, NotFoundError, ValidationFailed
from .filters import filter_and_sort_bookings
from .health import system_health
from .lifecycle import BookingLifecycle, available_transitions
from .logging_setup import configure_logging
from .middleware import RequestLoggingMiddleware
from .queries import MarketplaceQueries
from .rbac import require_admin, require_role
from .redis_client import redis_client
from .schemas import (
    AssignRole,
    BookingInput,
    LaborerInput,
    SortOrder,
    StatusFilter,
    UpdateBookingDetails,
    UpdateBookingStatus,
    UserProfile,
    UserRole,
)
from .security import Caller, get_current_caller

OPENAPI_TAGS = [
    {"name": "System", "description": "Operational endpoints (health, diagnostics)."},
    {"name": "Profile", "description": "The caller's user profile."},
    {"name": "Laborers", "description": "Laborer profiles and discovery."},
    {"name": "Bookings", "description": "Booking creation and lifecycle."},
    {"name": "Roles", "description": "Role checks delegated to the backend actor."},
]

app = FastAPI(title="LaborLink Client Service", openapi_tags=OPENAPI_TAGS)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.on_event("startup")
async def startup():
    configure_logging()


@app.on_event("shutdown")
async def shutdown():
    if redis_client is not None:
        await redis_client.aclose()


def _dump(model):
    return model.model_dump(mode="json", by_alias=True)


def _dump_list(models):
    return [_dump(m) for m in models]


def _result(result):
    """Unwrap a query result for a response, re-raising its error."""
    if result.is_error:
        raise result.error
    return result.data


# ================= SYSTEM =================

@app.get("/health", tags=["System"])
async def health():
    return {"status": "ok", "service": "laborlink-client"}


@app.get("/system/health", tags=["System"])
async def system_health_endpoint(queries: MarketplaceQueries = Depends(get_queries)):
    return await system_health(queries)


@app.post("/logout", tags=["System"])
async def logout(caller: Caller = Depends(get_current_caller), clients: ClientRegistry = Depends(get_registry)):
    await clients.drop(caller.principal)
    return {"message": "Logged out"}


# ================= PROFILE =================

@app.get("/profile", tags=["Profile"])
async def get_profile(queries: MarketplaceQueries = Depends(get_queries)):
    profile = _result(await queries.get_caller_user_profile())
    # a null profile means first login: the UI shows profile setup
    return {"profile": _dump(profile) if profile else None, "needsSetup": profile is None}


@app.put("/profile", tags=["Profile"])
async def save_profile(data: UserProfile, queries: MarketplaceQueries = Depends(get_queries)):
    if not data.name.strip():
        raise ValidationFailed("Please enter your name.", form=data.to_wire())
    try:
        await queries.save_caller_user_profile(data)
    except MarketplaceError as e:
        e.form = data.to_wire()
        raise
    profile = _result(await queries.get_caller_user_profile())
    return {"profile": _dump(profile) if profile else None}


@app.get("/users/{principal}/profile", tags=["Profile"])
async def get_user_profile(principal: str, queries: MarketplaceQueries = Depends(get_queries)):
    profile = _result(await queries.get_user_profile(principal))
    if profile is None:
        raise NotFoundError("User profile not found.")
    return _dump(profile)


# ================= LABORERS =================

@app.get("/laborer/me", tags=["Laborers"])
async def get_my_laborer(queries: MarketplaceQueries = Depends(get_queries)):
    laborer = _result(await queries.get_caller_laborer())
    return {"laborer": _dump(laborer) if laborer else None}


@app.put("/laborer/me", tags=["Laborers"])
async def save_my_laborer(data: LaborerInput, queries: MarketplaceQueries = Depends(get_queries)):
    try:
        await require_role(queries, [UserRole.user, UserRole.admin])
        await queries.save_caller_laborer(data)
    except MarketplaceError as e:
        e.form = data.to_wire()
        raise
    laborer = _result(await queries.get_caller_laborer())
    return {"laborer": _dump(laborer) if laborer else None}


@app.get("/laborers/near", tags=["Laborers"])
async def laborers_near(location: str, radius: int = 10, queries: MarketplaceQueries = Depends(get_queries)):
    result = await queries.get_bookables_near_location(location, radius)
    return _dump_list(_result(result) or [])


@app.get("/laborers", tags=["Laborers"])
async def laborers_by_neighborhood(neighborhood: str = "", queries: MarketplaceQueries = Depends(get_queries)):
    result = await queries.get_laborers_by_neighborhood(neighborhood)
    return _dump_list(_result(result) or [])


@app.get("/laborers/{laborer_id}", tags=["Laborers"])
async def get_laborer(laborer_id: str, queries: MarketplaceQueries = Depends(get_queries)):
    laborer = _result(await queries.get_laborer_by_id(laborer_id))
    if laborer is None:
        raise NotFoundError("Laborer not found.")
    return _dump(laborer)


# ================= BOOKINGS =================

@app.get("/bookings", tags=["Bookings"])
async def list_bookings(
    status: StatusFilter = "all",
    sort: SortOrder = "newest",
    direction: Literal["all", "incoming", "outgoing"] = "all",
    queries: MarketplaceQueries = Depends(get_queries),
):
    view = _result(await queries.get_bookings())
    out = {}
    if direction in ("all", "incoming"):
        out["incoming"] = _dump_list(filter_and_sort_bookings(view.incoming, status, sort))
    if direction in ("all", "outgoing"):
        out["outgoing"] = _dump_list(filter_and_sort_bookings(view.outgoing, status, sort))
    return out


@app.post("/bookings", tags=["Bookings"])
async def create_booking(data: BookingInput, lifecycle: BookingLifecycle = Depends(get_lifecycle)):
    booking_id = await lifecycle.create(data)
    return {"bookingId": booking_id, "message": "Booking created"}


@app.get("/bookings/{booking_id}", tags=["Bookings"])
async def get_booking(booking_id: int, laborer_id: str | None = None, lifecycle: BookingLifecycle = Depends(get_lifecycle)):
    booking = await lifecycle.load(booking_id, laborer_id=laborer_id)
    return {
        "booking": _dump(booking),
        "transitions": [s.value for s in available_transitions(booking, lifecycle.principal)],
    }


@app.get("/bookings/{booking_id}/transitions", tags=["Bookings"])
async def get_booking_transitions(booking_id: int, laborer_id: str | None = None, lifecycle: BookingLifecycle = Depends(get_lifecycle)):
    booking = await lifecycle.load(booking_id, laborer_id=laborer_id)
    return {"transitions": [s.value for s in available_transitions(booking, lifecycle.principal)]}


@app.post("/bookings/{booking_id}/status", tags=["Bookings"])
async def update_booking_status(
    booking_id: int,
    data: UpdateBookingStatus,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    booking = await lifecycle.load(booking_id, laborer_id=data.laborer_id)
    await lifecycle.transition(booking, data.status)
    updated = await lifecycle.load(booking_id, laborer_id=data.laborer_id)
    return {"booking": _dump(updated)}


@app.put("/bookings/{booking_id}/details", tags=["Bookings"])
async def update_booking_details(
    booking_id: int,
    data: UpdateBookingDetails,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    try:
        booking = await lifecycle.load(booking_id, laborer_id=data.laborer_id)
    except MarketplaceError as e:
        e.form = {"details": data.details}
        raise
    await lifecycle.update_details(booking, data.details)
    updated = await lifecycle.load(booking_id, laborer_id=data.laborer_id)
    return {"booking": _dump(updated), "message": "Booking details updated"}


# ================= ROLES =================

@app.get("/roles/me", tags=["Roles"])
async def my_role(queries: MarketplaceQueries = Depends(get_queries)):
    role = _result(await queries.get_caller_user_role())
    is_admin = _result(await queries.is_caller_admin())
    return {"role": role.value, "isAdmin": is_admin}


@app.post("/roles/assign", tags=["Roles"])
async def assign_role(data: AssignRole, queries: MarketplaceQueries = Depends(get_queries)):
    await require_admin(queries)
    await queries.assign_caller_user_role(data.principal, data.role)
    return {"message": "Role assigned", "principal": data.principal, "role": data.role.value}
