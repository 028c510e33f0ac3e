import pytest

from laborlink.errors import AuthorizationError, InvalidTransition, NotFoundError, NotReady, ValidationFailed
from laborlink.lifecycle import BookingLifecycle, available_transitions, check_transition
from laborlink.query import QueryClient
from laborlink.schemas import BookingStatus
from tests.helpers import ALICE, BOB, CAROL, booking_input, make_booking


# ---- pure rules ----

@pytest.mark.parametrize(
    "status,target,principal",
    [
        (BookingStatus.pending, BookingStatus.confirmed, BOB),
        (BookingStatus.pending, BookingStatus.cancelled, BOB),
        (BookingStatus.pending, BookingStatus.cancelled, ALICE),
        (BookingStatus.confirmed, BookingStatus.completed, BOB),
    ],
)
def test_allowed_transitions(status, target, principal):
    check_transition(make_booking(1, status=status), target, principal)


@pytest.mark.parametrize(
    "status,target",
    [
        (BookingStatus.pending, BookingStatus.confirmed),
        (BookingStatus.confirmed, BookingStatus.completed),
    ],
)
def test_requester_cannot_act_as_provider(status, target):
    with pytest.raises(AuthorizationError):
        check_transition(make_booking(1, status=status), target, ALICE)


@pytest.mark.parametrize("terminal", [BookingStatus.completed, BookingStatus.cancelled])
@pytest.mark.parametrize("target", list(BookingStatus))
@pytest.mark.parametrize("principal", [ALICE, BOB])
def test_terminal_states_accept_nothing(terminal, target, principal):
    with pytest.raises(InvalidTransition):
        check_transition(make_booking(1, status=terminal), target, principal)


def test_confirmed_cannot_be_cancelled():
    with pytest.raises(InvalidTransition):
        check_transition(make_booking(1, status=BookingStatus.confirmed), BookingStatus.cancelled, BOB)


def test_pending_cannot_jump_to_completed():
    with pytest.raises(InvalidTransition):
        check_transition(make_booking(1), BookingStatus.completed, BOB)


@pytest.mark.parametrize("principal", [CAROL, None, ""])
def test_outsiders_are_not_authorized(principal):
    with pytest.raises(AuthorizationError):
        check_transition(make_booking(1), BookingStatus.cancelled, principal)


def test_available_transitions_per_role():
    pending = make_booking(1)
    assert available_transitions(pending, BOB) == [BookingStatus.confirmed, BookingStatus.cancelled]
    assert available_transitions(pending, ALICE) == [BookingStatus.cancelled]
    assert available_transitions(pending, CAROL) == []

    confirmed = make_booking(1, status=BookingStatus.confirmed)
    assert available_transitions(confirmed, BOB) == [BookingStatus.completed]
    assert available_transitions(confirmed, ALICE) == []

    assert available_transitions(make_booking(1, status=BookingStatus.completed), BOB) == []


# ---- controller over the query layer ----

@pytest.mark.asyncio
async def test_outsider_transition_issues_no_mutation(backend, make_queries):
    client = QueryClient()
    async with client.scope() as scope:
        queries, actor = make_queries(backend, CAROL, scope)
        lifecycle = BookingLifecycle(queries)

        with pytest.raises(AuthorizationError):
            await lifecycle.cancel(make_booking(1))

    assert actor.count("updateBookingStatus") == 0


@pytest.mark.asyncio
async def test_zero_duration_rejected_before_remote_call(backend, make_queries):
    client = QueryClient()
    async with client.scope() as scope:
        queries, actor = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(queries)

        with pytest.raises(ValidationFailed) as exc:
            await lifecycle.create(booking_input(duration_hours=0))

    assert exc.value.code == "invalidFieldValues"
    assert exc.value.form["durationHours"] == 0
    assert actor.count("createBooking") == 0
    assert backend.laborers[BOB].bookings == []


@pytest.mark.asyncio
async def test_backend_signalled_invalid_fields_are_surfaced(backend, make_queries):
    client = QueryClient()
    async with client.scope() as scope:
        queries, actor = make_queries(backend, ALICE, scope)

        # skip the client-side check to exercise the backend variant
        with pytest.raises(ValidationFailed) as exc:
            await queries.create_booking(booking_input(duration_hours=0))

    assert exc.value.code == "invalidFieldValues"
    assert actor.count("createBooking") == 1


@pytest.mark.asyncio
async def test_booking_unknown_laborer(backend, make_queries):
    client = QueryClient()
    async with client.scope() as scope:
        queries, _ = make_queries(backend, ALICE, scope)
        with pytest.raises(NotFoundError) as exc:
            await BookingLifecycle(queries).create(booking_input(target=CAROL))

    # the form survives the error
    assert exc.value.form["targetLaborer"] == CAROL


@pytest.mark.asyncio
async def test_book_confirm_complete(backend, make_queries):
    alice_client, bob_client = QueryClient(), QueryClient()

    async with alice_client.scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        booking_id = await BookingLifecycle(alice).create(booking_input())

    async with bob_client.scope() as scope:
        bob, bob_actor = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)

        booking = await lifecycle.load(booking_id)
        assert booking.status == BookingStatus.pending

        await lifecycle.confirm(booking)
        booking = await lifecycle.load(booking_id)
        assert booking.status == BookingStatus.confirmed

        await lifecycle.complete(booking)
        booking = await lifecycle.load(booking_id)
        assert booking.status == BookingStatus.completed

        calls_before = bob_actor.count("updateBookingStatus")
        for target in BookingStatus:
            with pytest.raises(InvalidTransition):
                await lifecycle.transition(booking, target)
        assert bob_actor.count("updateBookingStatus") == calls_before

    assert backend.find_booking(booking_id).status == BookingStatus.completed


@pytest.mark.asyncio
async def test_book_then_provider_declines(backend, make_queries):
    async with QueryClient().scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        booking_id = await BookingLifecycle(alice).create(booking_input())

    async with QueryClient().scope() as scope:
        bob, _ = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)
        await lifecycle.cancel(await lifecycle.load(booking_id))
        assert (await lifecycle.load(booking_id)).status == BookingStatus.cancelled

    async with QueryClient().scope() as scope:
        alice, alice_actor = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        # the requester finds it on the laborer's record
        booking = await lifecycle.load(booking_id, laborer_id=BOB)
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel(booking)
        assert alice_actor.count("updateBookingStatus") == 0


@pytest.mark.asyncio
async def test_requester_can_withdraw_pending(backend, make_queries):
    async with QueryClient().scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        booking_id = await lifecycle.create(booking_input())

        booking = await lifecycle.load(booking_id, laborer_id=BOB)
        await lifecycle.cancel(booking)

    assert backend.find_booking(booking_id).status == BookingStatus.cancelled


@pytest.mark.asyncio
async def test_requester_lookup_without_laborer_hint_is_not_found(backend, make_queries):
    async with QueryClient().scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        booking_id = await lifecycle.create(booking_input())

        with pytest.raises(NotFoundError):
            await lifecycle.load(booking_id)


@pytest.mark.asyncio
async def test_transition_refreshes_cached_views(backend, make_queries):
    backend.laborers[BOB].bookings.append(make_booking(7))

    async with QueryClient().scope() as scope:
        bob, bob_actor = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)

        view = (await bob.get_bookings()).data
        assert [b.status for b in view.incoming] == [BookingStatus.pending]
        booking = await lifecycle.load(7)

        await lifecycle.confirm(booking)

        # both active views were refetched during the transition
        view = (await bob.get_bookings()).data
        assert [b.status for b in view.incoming] == [BookingStatus.confirmed]
        assert (await bob.get_booking_by_id(7)).data.status == BookingStatus.confirmed


@pytest.mark.asyncio
async def test_update_details(backend, make_queries):
    backend.laborers[BOB].bookings.append(make_booking(8))

    async with QueryClient().scope() as scope:
        bob, _ = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)
        booking = await lifecycle.load(8)

        with pytest.raises(ValidationFailed):
            await lifecycle.update_details(booking, "   ")

        await lifecycle.update_details(booking, "Bring a ladder")
        assert (await lifecycle.load(8)).details == "Bring a ladder"


@pytest.mark.asyncio
async def test_outsider_cannot_update_details(backend, make_queries):
    async with QueryClient().scope() as scope:
        carol, carol_actor = make_queries(backend, CAROL, scope)
        with pytest.raises(AuthorizationError):
            await BookingLifecycle(carol).update_details(make_booking(8), "hello")
    assert carol_actor.count("updateBookingDetails") == 0


@pytest.mark.asyncio
async def test_requester_cannot_cancel_after_provider_confirmed_behind_cached_view(backend, make_queries):
    backend.laborers[BOB].bookings.append(make_booking(9))
    alice_client = QueryClient()

    async with alice_client.scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        seen = await BookingLifecycle(alice).load(9, laborer_id=BOB)
        assert seen.status == BookingStatus.pending

    async with QueryClient().scope() as scope:
        bob, _ = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)
        await lifecycle.confirm(await lifecycle.load(9))

    # alice's cache still holds the pending copy inside its fresh window
    async with alice_client.scope() as scope:
        alice, alice_actor = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        cached = await lifecycle.load(9, laborer_id=BOB)
        assert cached.status == BookingStatus.pending

        with pytest.raises(InvalidTransition):
            await lifecycle.cancel(cached)

    assert alice_actor.count("updateBookingStatus") == 0
    assert backend.find_booking(9).status == BookingStatus.confirmed


@pytest.mark.asyncio
async def test_second_cancel_after_decline_is_rejected_despite_cached_view(backend, make_queries):
    backend.laborers[BOB].bookings.append(make_booking(10))
    alice_client = QueryClient()

    async with alice_client.scope() as scope:
        alice, _ = make_queries(backend, ALICE, scope)
        await BookingLifecycle(alice).load(10, laborer_id=BOB)

    async with QueryClient().scope() as scope:
        bob, _ = make_queries(backend, BOB, scope)
        lifecycle = BookingLifecycle(bob)
        await lifecycle.cancel(await lifecycle.load(10))

    async with alice_client.scope() as scope:
        alice, alice_actor = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel(await lifecycle.load(10, laborer_id=BOB))

    assert alice_actor.count("updateBookingStatus") == 0


@pytest.mark.asyncio
async def test_refreshed_load_bypasses_fresh_cache(backend, make_queries, query_client):
    backend.laborers[BOB].bookings.append(make_booking(11))

    async with query_client.scope() as scope:
        alice, actor = make_queries(backend, ALICE, scope)
        lifecycle = BookingLifecycle(alice)
        await lifecycle.load(11, laborer_id=BOB)
        backend.find_booking(11).status = BookingStatus.confirmed

        assert (await lifecycle.load(11, laborer_id=BOB)).status == BookingStatus.pending
        assert (await lifecycle.load(11, laborer_id=BOB, refresh=True)).status == BookingStatus.confirmed
        assert actor.count("getLaborerById") == 2


@pytest.mark.asyncio
async def test_load_requires_ready_session(backend, make_queries, query_client):
    backend.laborers[BOB].bookings.append(make_booking(12))
    async with query_client.scope() as scope:
        bob, actor = make_queries(backend, BOB, scope, ready=False)
        with pytest.raises(NotReady):
            await BookingLifecycle(bob).load(12)
    assert actor.calls == []
