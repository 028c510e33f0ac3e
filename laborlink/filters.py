from typing import Iterable

from .schemas import Booking, BookingsView, BookingStatus

SORT_ORDERS = ("newest", "oldest")


def filter_and_sort_bookings(
    bookings: Iterable[Booking],
    status_filter: BookingStatus | str = "all",
    sort_order: str = "newest",
) -> list[Booking]:
    """
    Filter bookings by status and order them by scheduled date/time.

    Returns a new list; the input is never mutated. Bookings with the same
    date/time keep their original relative order, so applying the function
    to its own output gives the same output.
    """
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"Invalid sort order: {sort_order}. Allowed: {list(SORT_ORDERS)}")

    if status_filter == "all":
        filtered = list(bookings)
    else:
        try:
            wanted = BookingStatus(status_filter)
        except ValueError:
            raise ValueError(f"Invalid status filter: {status_filter}")
        filtered = [b for b in bookings if b.status == wanted]

    # sorted() is stable, also with reverse=True
    return sorted(filtered, key=lambda b: b.date_time, reverse=(sort_order == "newest"))


def split_bookings(bookings: Iterable[Booking], principal: str | None) -> BookingsView:
    """Incoming: the caller is the laborer being booked. Outgoing: the caller requested it."""
    view = BookingsView()
    if not principal:
        return view
    for b in bookings:
        if b.target_laborer == principal:
            view.incoming.append(b)
        if b.requester == principal:
            view.outgoing.append(b)
    return view
