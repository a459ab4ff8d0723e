"""
Effective room status.

``Room.status`` is the physical status: it is what lifecycle operations read
and write, and what decides whether a mutation is allowed. The effective
status computed here is what calendars and availability screens display. It
is derived on every call from the physical status and the bookings, and is
never stored.
"""

from collections import Counter
from datetime import date, datetime, time

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .models import Booking, RoomStatus, normalize_room_status

ACTIVE_BOOKING_STATUSES = (Booking.Status.CONFIRMED, Booking.Status.IN_PROGRESS)

DISPLAY_STATUSES = (
    RoomStatus.AVAILABLE,
    RoomStatus.OCCUPIED,
    RoomStatus.PENDING_CHECKOUT,
    RoomStatus.MAINTENANCE,
)


def as_aware_datetime(value):
    """Coerce a datetime, date or ISO string to an aware datetime.

    Returns None for anything that cannot be read as a point in time.
    """
    if value is None or value == '':
        return None
    try:
        if isinstance(value, str):
            parsed = parse_datetime(value)
            if parsed is None:
                parsed = parse_date(value)
            value = parsed
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, date):
            moment = datetime.combine(value, time.min)
        else:
            return None
        if timezone.is_naive(moment):
            moment = timezone.make_aware(moment)
        return moment
    except (TypeError, ValueError, OverflowError):
        return None


def is_active(booking):
    """Whether a booking still holds its room.

    COMPLETED bookings without a recorded checkout count as active: the
    status was advanced but the departure itself was never logged.
    """
    if booking.status in ACTIVE_BOOKING_STATUSES:
        return True
    return booking.status == Booking.Status.COMPLETED and not booking.actual_check_out


def covers(booking, at):
    start = as_aware_datetime(booking.planned_start)
    end = as_aware_datetime(booking.planned_end)
    if start is None or end is None:
        return False
    return start <= at <= end


def effective_status(room, bookings, at=None):
    """Status of ``room`` to display at instant ``at`` (default: now).

    ``bookings`` may contain bookings of other rooms; they are ignored.
    """
    physical = normalize_room_status(room.status)
    if physical == RoomStatus.MAINTENANCE:
        return RoomStatus.MAINTENANCE

    moment = as_aware_datetime(at) if at is not None else timezone.now()
    if moment is not None:
        for booking in bookings:
            if booking.room_id != room.pk or not is_active(booking):
                continue
            if covers(booking, moment):
                return RoomStatus.OCCUPIED

    if physical == RoomStatus.PENDING_CLEANING:
        return RoomStatus.AVAILABLE
    return physical


def effective_statuses(rooms, bookings, at=None):
    """Map room pk -> effective status for a batch of rooms."""
    moment = at if at is not None else timezone.now()
    by_room = {}
    for booking in bookings:
        by_room.setdefault(booking.room_id, []).append(booking)
    return {
        room.pk: effective_status(room, by_room.get(room.pk, ()), moment)
        for room in rooms
    }


def status_overview(rooms, bookings, at=None):
    counts = Counter({status.value: 0 for status in DISPLAY_STATUSES})
    for status in effective_statuses(rooms, bookings, at).values():
        counts[str(status)] += 1
    return dict(counts)
