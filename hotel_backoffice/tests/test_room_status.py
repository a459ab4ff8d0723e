from datetime import date

from django.test import TestCase

from hotel_backoffice.models import Booking, Room, RoomStatus
from hotel_backoffice.room_status import (
    as_aware_datetime,
    effective_status,
    effective_statuses,
    status_overview,
)
from .helpers import local_dt, make_booking, make_room, make_tenant


class EffectiveStatusTestCase(TestCase):
    """Display status derived from the physical status and the bookings"""

    def setUp(self):
        self.room = make_room("101")
        self.tenant = make_tenant()
        self.booking = make_booking(self.room, self.tenant, local_dt(2025, 1, 10, 14), local_dt(2025, 1, 15, 11))

    def test_confirmed_booking_covering_instant_marks_room_occupied(self):
        self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 12)), RoomStatus.OCCUPIED)

    def test_physical_status_outside_booking_period(self):
        self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 20)), RoomStatus.AVAILABLE)

    def test_interval_bounds_are_inclusive(self):
        for at in (local_dt(2025, 1, 10, 14), local_dt(2025, 1, 15, 11)):
            with self.subTest(at=at):
                self.assertEqual(effective_status(self.room, [self.booking], at), RoomStatus.OCCUPIED)

    def test_maintenance_wins_over_bookings(self):
        for status in (RoomStatus.MAINTENANCE, RoomStatus.LEGACY_MAINTENANCE):
            with self.subTest(status=status):
                self.room.status = status
                self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 12)),
                                 RoomStatus.MAINTENANCE)

    def test_completed_booking_with_checkout_never_occupies(self):
        self.booking.status = Booking.Status.COMPLETED
        self.booking.actual_check_out = local_dt(2025, 1, 15, 10)
        self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 12)), RoomStatus.AVAILABLE)

    def test_completed_booking_without_checkout_still_occupies(self):
        self.booking.status = Booking.Status.COMPLETED
        self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 12)), RoomStatus.OCCUPIED)

    def test_pending_and_cancelled_bookings_are_ignored(self):
        for status in (Booking.Status.PENDING, Booking.Status.CANCELLED):
            with self.subTest(status=status):
                self.booking.status = status
                self.assertEqual(effective_status(self.room, [self.booking], local_dt(2025, 1, 12)),
                                 RoomStatus.AVAILABLE)

    def test_bookings_of_other_rooms_are_ignored(self):
        other = make_room("102")
        self.assertEqual(effective_status(other, [self.booking], local_dt(2025, 1, 12)), RoomStatus.AVAILABLE)

    def test_pending_cleaning_displays_as_available(self):
        self.room.status = RoomStatus.PENDING_CLEANING
        self.assertEqual(effective_status(self.room, [], local_dt(2025, 1, 20)), RoomStatus.AVAILABLE)

    def test_legacy_labels_are_normalised(self):
        cases = [
            (RoomStatus.LEGACY_FREE, RoomStatus.AVAILABLE),
            (RoomStatus.LEGACY_OCCUPIED, RoomStatus.OCCUPIED),
            (RoomStatus.LEGACY_CLEANING, RoomStatus.AVAILABLE),
        ]
        for stored, expected in cases:
            with self.subTest(stored=stored):
                self.room.status = stored
                self.assertEqual(effective_status(self.room, [], local_dt(2025, 1, 20)), expected)

    def test_pending_checkout_is_kept(self):
        self.room.status = RoomStatus.PENDING_CHECKOUT
        self.assertEqual(effective_status(self.room, [], local_dt(2025, 1, 20)), RoomStatus.PENDING_CHECKOUT)

    def test_unparseable_dates_mean_not_active(self):
        broken = Booking(room=self.room, tenant=self.tenant, planned_start="not a date",
                         planned_end="2025-01-15", status=Booking.Status.CONFIRMED)
        self.assertEqual(effective_status(self.room, [broken], local_dt(2025, 1, 12)), RoomStatus.AVAILABLE)

    def test_instant_may_be_a_date_or_string(self):
        for at in (date(2025, 1, 12), "2025-01-12", "2025-01-12T09:00:00"):
            with self.subTest(at=at):
                self.assertEqual(effective_status(self.room, [self.booking], at), RoomStatus.OCCUPIED)


class StatusHelpersTestCase(TestCase):

    def test_as_aware_datetime_rejects_garbage(self):
        for value in (None, '', 'tomorrow', 42):
            with self.subTest(value=value):
                self.assertIsNone(as_aware_datetime(value))

    def test_batch_statuses_and_overview(self):
        tenant = make_tenant()
        busy = make_room("101")
        free = make_room("102")
        closed = make_room("103", status=Room.Status.MAINTENANCE)
        booking = make_booking(busy, tenant, local_dt(2025, 1, 10, 14), local_dt(2025, 1, 15, 11))
        rooms = [busy, free, closed]
        at = local_dt(2025, 1, 12)

        self.assertEqual(effective_statuses(rooms, [booking], at), {
            busy.pk: RoomStatus.OCCUPIED,
            free.pk: RoomStatus.AVAILABLE,
            closed.pk: RoomStatus.MAINTENANCE,
        })
        self.assertEqual(status_overview(rooms, [booking], at), {
            'AVAILABLE': 1,
            'OCCUPIED': 1,
            'PENDING_CHECKOUT': 0,
            'MAINTENANCE': 1,
        })
