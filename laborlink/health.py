import time

from .queries import CURRENT_USER_PROFILE, MarketplaceQueries

HEALTHY = "healthy"
ERROR = "error"
UNTESTED = "untested"


def _component(name: str, status: str, message: str, details: str | None = None, latency_ms: float | None = None):
    out = {"name": name, "status": status, "message": message}
    if details is not None:
        out["details"] = details
    if latency_ms is not None:
        out["latency_ms"] = round(latency_ms, 2)
    return out


async def _timed(fetch):
    start = time.perf_counter()
    result = await fetch()
    return result, (time.perf_counter() - start) * 1000


def overall_status(components: list[dict]) -> str:
    if any(c["status"] == ERROR for c in components):
        return ERROR
    return HEALTHY


async def system_health(queries: MarketplaceQueries) -> dict:
    """
    Diagnostic snapshot of authentication, actor connectivity and the main
    caller queries. Query checks read through the cache like any view.
    """
    session = queries.session
    authenticated = bool(session.principal)
    components = []

    if authenticated:
        components.append(_component("Authentication", HEALTHY, f"Authenticated as {session.principal[:10]}...",
                                     details=f"Principal: {session.principal}"))
    else:
        components.append(_component("Authentication", UNTESTED, "Not authenticated"))

    if not session.ready:
        components.append(_component("Backend Actor", ERROR, "Connection failed - actor not available"))
        for name in ("User Profile Query", "Laborer Profile Query", "Bookings Query"):
            components.append(_component(name, UNTESTED, "Login required"))
        return {"status": overall_status(components), "components": components}

    # bypass the cache: the profile read doubles as the actor connectivity check
    await queries.refresh(CURRENT_USER_PROFILE)
    result, ms = await _timed(queries.get_caller_user_profile)

    if result.is_error and result.error.kind in ("transport", "timeout", "unexpected"):
        components.append(_component("Backend Actor", ERROR, f"Actor call failed: {result.error.message}", latency_ms=ms))
    else:
        components.append(_component("Backend Actor", HEALTHY, "Backend connection established", latency_ms=ms))

    if result.is_error:
        components.append(_component("User Profile Query", ERROR, f"Query failed: {result.error.message}", latency_ms=ms))
    elif result.data:
        components.append(_component("User Profile Query", HEALTHY, f"Profile loaded: {result.data.name}",
                                     details=f"Name: {result.data.name}", latency_ms=ms))
    else:
        components.append(_component("User Profile Query", HEALTHY, "No profile found (new user)", latency_ms=ms))

    result, ms = await _timed(queries.get_caller_laborer)
    if result.is_error:
        components.append(_component("Laborer Profile Query", ERROR, f"Query failed: {result.error.message}", latency_ms=ms))
    elif result.data:
        laborer = result.data
        components.append(_component(
            "Laborer Profile Query", HEALTHY, f"Laborer profile loaded: {laborer.name}",
            details=f"Location: {laborer.location}, Bookings: {len(laborer.bookings)}", latency_ms=ms,
        ))
    else:
        components.append(_component("Laborer Profile Query", HEALTHY, "No laborer profile (not a worker)", latency_ms=ms))

    result, ms = await _timed(queries.get_bookings)
    if result.is_error:
        components.append(_component("Bookings Query", ERROR, f"Query failed: {result.error.message}", latency_ms=ms))
    else:
        view = result.data
        components.append(_component(
            "Bookings Query", HEALTHY,
            f"Bookings loaded: {len(view.incoming)} incoming, {len(view.outgoing)} outgoing",
            details=f"Total: {len(view.incoming) + len(view.outgoing)} bookings", latency_ms=ms,
        ))

    return {"status": overall_status(components), "components": components}
