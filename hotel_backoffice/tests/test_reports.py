from datetime import date, timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from hotel_backoffice import reports, services
from hotel_backoffice.models import Booking, Payment, Room, Setting, Tenant
from .helpers import local_dt, make_booking, make_room, make_tenant


class CashReportTestCase(TestCase):
    """Money received per day"""

    def setUp(self):
        self.booking = make_booking(make_room("101"), make_tenant(), local_dt(2030, 1, 1, 14),
                                    local_dt(2030, 1, 5, 11))

    def test_daily_totals(self):
        services.record_payment(self.booking, Decimal("40"), Decimal("168000"), payment_date=date(2030, 1, 1))
        services.record_payment(self.booking, Decimal("10"), method=Payment.Method.CARD,
                                payment_date=date(2030, 1, 1))
        services.record_payment(self.booking, amount_cdf=Decimal("30000"), payment_date=date(2030, 1, 2),
                                rate=Decimal("3000"))

        summary = reports.cash_daily_summary()

        self.assertEqual([d['date'] for d in summary['days']], [date(2030, 1, 2), date(2030, 1, 1)])
        first_day = summary['days'][1]
        self.assertEqual(first_day['total_usd'], Decimal("50.00"))
        self.assertEqual(first_day['total_cdf'], Decimal("168000.00"))
        self.assertEqual(first_day['total_equivalent_usd'], Decimal("110.00"))
        self.assertEqual(first_day['payment_count'], 2)
        self.assertEqual(first_day['methods'], ['CARD', 'CASH'])
        self.assertEqual(summary['total_equivalent_usd'], Decimal("120.00"))
        self.assertEqual(summary['payment_count'], 3)

        only_second = reports.cash_daily_summary(start=date(2030, 1, 2))
        self.assertEqual(len(only_second['days']), 1)
        self.assertEqual(only_second['total_equivalent_usd'], Decimal("10.00"))


class OverdueDebtsTestCase(TestCase):

    def test_overdue_stays_sorted_by_days(self):
        tenant = make_tenant()
        today = timezone.localdate()
        now = timezone.now()
        one_day = make_booking(make_room("101", price="40.00"), tenant, now - timedelta(days=5),
                               now - timedelta(days=1), status=Booking.Status.IN_PROGRESS)
        three_days = make_booking(make_room("102", price="50.00"), tenant, now - timedelta(days=8),
                                  now - timedelta(days=3), status=Booking.Status.IN_PROGRESS)
        # finished stays owe nothing
        make_booking(make_room("103"), tenant, now - timedelta(days=8), now - timedelta(days=3),
                     status=Booking.Status.COMPLETED)

        debts = reports.overdue_debts(today)

        self.assertEqual([d['booking_id'] for d in debts], [three_days.pk, one_day.pk])
        self.assertEqual(debts[0]['overdue_days'], 3)
        self.assertEqual(debts[0]['debt_amount'], Decimal("150.00"))
        self.assertEqual(debts[1]['daily_rate'], Decimal("40.00"))


class ReportApiTestCase(APITestCase):

    def test_report_endpoints(self):
        make_room("101")
        make_room("102", status=Room.Status.MAINTENANCE)
        for name in ('report-cash', 'report-overdue-debts', 'report-room-status'):
            with self.subTest(report=name):
                response = self.client.get(reverse(name))
                self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(reverse('report-room-status'))
        self.assertEqual(response.data['AVAILABLE'], 1)
        self.assertEqual(response.data['MAINTENANCE'], 1)

    def test_health_and_welcome(self):
        self.assertEqual(self.client.get('/health').json(), {'status': 'ok'})
        self.assertEqual(self.client.get('/').status_code, status.HTTP_200_OK)


class ManagementCommandTestCase(TestCase):

    def test_populate_db_is_idempotent(self):
        out = StringIO()
        call_command('populate_db', stdout=out)
        call_command('populate_db', '--rate', '2900', stdout=out)

        self.assertEqual(Room.objects.count(), 4)
        self.assertEqual(Tenant.objects.count(), 2)
        self.assertEqual(Setting.objects.get(key='exchange_rate').value, {'usd_to_cdf': '2900'})
        self.assertIn('Successfully populated database', out.getvalue())

    def test_flag_pending_checkouts_command(self):
        now = timezone.now()
        room = make_room("101", status=Room.Status.OCCUPIED)
        make_booking(room, make_tenant(), now - timedelta(days=2), now - timedelta(hours=1),
                     status=Booking.Status.IN_PROGRESS)
        out = StringIO()
        call_command('flag_pending_checkouts', stdout=out)

        room.refresh_from_db()
        self.assertEqual(room.status, Room.Status.PENDING_CHECKOUT)
        self.assertIn('1 room(s) flagged', out.getvalue())
