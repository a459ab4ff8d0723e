from datetime import date
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.test import APITestCase

from hotel_backoffice import reports, services
from hotel_backoffice.exceptions import InvalidExtension, InvalidTransition, OperationFailed
from hotel_backoffice.models import Booking, Invoice, Room, Task
from hotel_backoffice.saga import Saga
from .helpers import local_dt, make_booking, make_room, make_tenant


class StayExtensionTestCase(TestCase):
    """Extending a stay: extra nights, discount, booking total and invoice"""

    def setUp(self):
        self.room = make_room("101", price="50.00", status=Room.Status.OCCUPIED)
        self.tenant = make_tenant()
        self.booking = make_booking(self.room, self.tenant, local_dt(2025, 2, 5, 14), local_dt(2025, 2, 10, 11),
                                    total="300.00", status=Booking.Status.IN_PROGRESS)

    def test_extend_with_discount(self):
        result = services.extend_stay(self.booking, date(2025, 2, 13), discount_per_night=Decimal("5"))

        self.assertEqual(result.quote.additional_nights, 3)
        self.assertEqual(result.quote.net_extra, Decimal("135.00"))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.total_price, Decimal("435.00"))
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(self.booking.planned_end, local_dt(2025, 2, 13, 11))

        invoice = result.invoice
        self.assertEqual(invoice.status, Invoice.Status.ISSUED)
        self.assertEqual(invoice.subtotal, Decimal("150.00"))
        self.assertEqual(invoice.discount_amount, Decimal("15.00"))
        self.assertEqual(invoice.net_total, Decimal("135.00"))
        self.assertEqual(invoice.period_start, local_dt(2025, 2, 10, 11))
        self.assertEqual(invoice.period_end, local_dt(2025, 2, 13, 11))
        self.assertEqual(invoice.items.count(), 1)
        item = invoice.items.get()
        self.assertEqual(item.quantity, 3)
        self.assertEqual(item.unit_price, Decimal("50.00"))

    def test_extension_without_net_price_issues_no_invoice(self):
        result = services.extend_stay(self.booking, date(2025, 2, 12), discount_per_night=Decimal("50"))

        self.assertIsNone(result.invoice)
        self.assertFalse(Invoice.objects.exists())
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.total_price, Decimal("300.00"))
        self.assertEqual(self.booking.planned_end, local_dt(2025, 2, 12, 11))

    def test_operator_total_override(self):
        services.extend_stay(self.booking, date(2025, 2, 13), new_total=Decimal("400"))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.total_price, Decimal("400.00"))

    def test_new_end_not_after_current_end_is_rejected(self):
        for new_end in (date(2025, 2, 10), date(2025, 2, 8)):
            with self.subTest(new_end=new_end):
                with self.assertRaises(InvalidExtension):
                    services.extend_stay(self.booking, new_end)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.planned_end, local_dt(2025, 2, 10, 11))
        self.assertEqual(self.booking.total_price, Decimal("300.00"))
        self.assertEqual(self.booking.status, Booking.Status.IN_PROGRESS)
        self.assertFalse(Invoice.objects.exists())

    def test_extension_into_next_booking_is_rejected(self):
        make_booking(self.room, make_tenant("Jean", "Ilunga"), local_dt(2025, 2, 12, 14), local_dt(2025, 2, 14, 11))
        with self.assertRaises(ValidationError) as ctx:
            services.extend_stay(self.booking, date(2025, 2, 13))
        self.assertIn('not available', str(ctx.exception.detail))

    def test_extension_reopens_room_flagged_for_checkout(self):
        Room.objects.filter(pk=self.room.pk).update(status=Room.Status.PENDING_CHECKOUT)
        services.extend_stay(self.booking, date(2025, 2, 11))
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)

    def test_extended_stay_is_flagged_again_once_overdue(self):
        services.extend_stay(self.booking, date(2025, 2, 13))
        at = local_dt(2025, 2, 14, 12)

        flagged = services.flag_pending_checkouts(at)

        self.assertEqual([room.number for room in flagged], ['101'])
        self.assertEqual(list(services.pending_checkouts(at)), [self.booking])
        debts = reports.overdue_debts(date(2025, 2, 14))
        self.assertEqual([d['booking_id'] for d in debts], [self.booking.pk])
        self.assertEqual(debts[0]['overdue_days'], 1)

        self.booking.refresh_from_db()
        result = services.CheckoutDecision(self.booking).depart()
        self.assertEqual(result.booking.status, Booking.Status.COMPLETED)
        self.assertEqual(result.room.status, Room.Status.PENDING_CLEANING)

    def test_checked_in_extended_stay_counts_as_staying(self):
        Booking.objects.filter(pk=self.booking.pk).update(actual_check_in=local_dt(2025, 2, 5, 15))
        Room.objects.filter(pk=self.room.pk).update(status=Room.Status.PENDING_CLEANING)
        self.booking.refresh_from_db()
        services.extend_stay(self.booking, date(2025, 2, 13))
        self.booking.refresh_from_db()

        self.assertTrue(self.booking.guest_in_room)
        self.assertIn(self.booking, services.staying_bookings(local_dt(2025, 2, 14, 12)))

    def test_cancelling_extended_stay_leaves_room_to_clean(self):
        services.extend_stay(self.booking, date(2025, 2, 13))
        self.booking.refresh_from_db()
        services.cancel_booking(self.booking)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.PENDING_CLEANING)

    def test_terminal_bookings_cannot_be_extended(self):
        Booking.objects.filter(pk=self.booking.pk).update(status=Booking.Status.COMPLETED)
        self.booking.refresh_from_db()
        with self.assertRaises(InvalidTransition):
            services.extend_stay(self.booking, date(2025, 2, 13))

    def test_failed_invoice_undoes_booking_update(self):
        with mock.patch.object(Invoice.objects, 'create', side_effect=DatabaseError("disk full")):
            with self.assertRaises(OperationFailed) as ctx:
                services.extend_stay(self.booking, date(2025, 2, 13), discount_per_night=Decimal("5"))

        self.assertEqual(ctx.exception.failed_step, 'create_invoice')
        self.assertEqual(ctx.exception.compensated, ['update_booking'])
        self.assertEqual(ctx.exception.inconsistent, [])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.planned_end, local_dt(2025, 2, 10, 11))
        self.assertEqual(self.booking.total_price, Decimal("300.00"))
        self.assertEqual(self.booking.status, Booking.Status.IN_PROGRESS)


class DepartureTestCase(TestCase):
    """Confirmed departure: booking completed, room to clean, cleaning task"""

    def setUp(self):
        self.room = make_room("102", status=Room.Status.PENDING_CHECKOUT)
        self.tenant = make_tenant()
        self.booking = make_booking(self.room, self.tenant, local_dt(2025, 2, 5, 14), local_dt(2025, 2, 10, 11),
                                    status=Booking.Status.IN_PROGRESS)

    def test_depart(self):
        at = local_dt(2025, 2, 10, 10, 30)
        result = services.depart(self.booking, at)

        self.assertEqual(result.booking.status, Booking.Status.COMPLETED)
        self.assertEqual(result.booking.actual_check_out, at)
        self.assertEqual(result.room.status, Room.Status.PENDING_CLEANING)
        self.assertEqual(result.task.room, self.room)
        self.assertEqual(result.task.task_type, Task.Type.CLEANING)
        self.assertEqual(result.task.status, Task.Status.TO_DO)

    def test_failed_task_creation_restores_booking_and_room(self):
        with mock.patch.object(Task.objects, 'create', side_effect=DatabaseError("disk full")):
            with self.assertRaises(OperationFailed) as ctx:
                services.depart(self.booking)

        self.assertEqual(ctx.exception.failed_step, 'create_cleaning_task')
        self.assertEqual(ctx.exception.compensated, ['mark_room_for_cleaning', 'complete_booking'])
        self.booking.refresh_from_db()
        self.room.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.IN_PROGRESS)
        self.assertIsNone(self.booking.actual_check_out)
        self.assertEqual(self.room.status, Room.Status.PENDING_CHECKOUT)
        self.assertFalse(Task.objects.exists())

    def test_cancelled_booking_cannot_depart(self):
        Booking.objects.filter(pk=self.booking.pk).update(status=Booking.Status.CANCELLED)
        self.booking.refresh_from_db()
        with self.assertRaises(InvalidTransition):
            services.depart(self.booking)


class CheckoutDecisionTestCase(TestCase):

    def setUp(self):
        self.room = make_room("103", status=Room.Status.PENDING_CHECKOUT)
        self.booking = make_booking(self.room, make_tenant(), local_dt(2025, 2, 5, 14),
                                    local_dt(2025, 2, 10, 11), status=Booking.Status.IN_PROGRESS)
        self.decision = services.CheckoutDecision(self.booking)

    def test_starts_in_choice_and_quotes_without_discount(self):
        self.assertEqual(self.decision.state, services.CheckoutDecision.CHOICE)
        quote = self.decision.extension_quote(date(2025, 2, 13))
        self.assertEqual(quote.suggested_total, Decimal("450.00"))
        self.assertEqual(self.decision.state, services.CheckoutDecision.CHOICE)

    def test_decision_is_taken_once(self):
        self.decision.depart()
        self.assertEqual(self.decision.state, services.CheckoutDecision.DEPART)
        with self.assertRaises(InvalidTransition):
            self.decision.extend(date(2025, 2, 13))

    def test_failed_extension_leaves_choice_open(self):
        with self.assertRaises(InvalidExtension):
            self.decision.extend(date(2025, 2, 9))
        self.assertEqual(self.decision.state, services.CheckoutDecision.CHOICE)
        self.decision.extend(date(2025, 2, 12))
        self.assertEqual(self.decision.state, services.CheckoutDecision.EXTEND)


class SagaTestCase(TestCase):
    """Compensation order and reporting"""

    def test_undo_runs_in_reverse_order(self):
        calls = []
        saga = (Saga('test')
                .step('first', lambda: calls.append('first') or 1, lambda result: calls.append(('undo first', result)))
                .step('second', lambda: calls.append('second') or 2, lambda result: calls.append(('undo second', result)))
                .step('third', mock.Mock(side_effect=RuntimeError("boom"))))

        with self.assertLogs('hotel_backoffice.saga', level='WARNING'):
            with self.assertRaises(OperationFailed) as ctx:
                saga.run()

        self.assertEqual(calls, ['first', 'second', ('undo second', 2), ('undo first', 1)])
        self.assertEqual(ctx.exception.compensated, ['second', 'first'])
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_failed_undo_is_reported_inconsistent(self):
        saga = (Saga('test')
                .step('first', lambda: None, mock.Mock(side_effect=RuntimeError("undo broke")))
                .step('second', lambda: None)
                .step('third', mock.Mock(side_effect=RuntimeError("boom"))))

        with self.assertLogs('hotel_backoffice.saga', level='ERROR') as logs:
            with self.assertRaises(OperationFailed) as ctx:
                saga.run()

        self.assertEqual(ctx.exception.failed_step, 'third')
        self.assertEqual(ctx.exception.compensated, [])
        self.assertEqual(ctx.exception.inconsistent, ['second', 'first'])
        self.assertIn('left inconsistent state', '\n'.join(logs.output))

    def test_results_returned_by_step_name(self):
        results = Saga('test').step('a', lambda: 1).step('b', lambda: 2).run()
        self.assertEqual(results, {'a': 1, 'b': 2})


class CheckoutApiTestCase(APITestCase):
    """Depart and extend through the booking actions"""

    def setUp(self):
        self.room = make_room("104", price="50.00", status=Room.Status.OCCUPIED)
        self.booking = make_booking(self.room, make_tenant(), local_dt(2025, 2, 5, 14),
                                    local_dt(2025, 2, 10, 11), status=Booking.Status.IN_PROGRESS)

    def test_extend_action(self):
        url = reverse('booking-extend', args=[self.booking.pk])
        response = self.client.post(url, {'new_end_date': '2025-02-13', 'discount_per_night': '5'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['booking']['total_price'], Decimal('435.00'))
        self.assertEqual(response.data['invoice']['net_total'], Decimal('135.00'))
        self.assertEqual(response.data['quote']['additional_nights'], 3)

    def test_extend_action_rejects_earlier_date(self):
        url = reverse('booking-extend', args=[self.booking.pk])
        response = self.client.post(url, {'new_end_date': '2025-02-10'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('new_end_date', response.data)

    def test_extension_quote_action(self):
        url = reverse('booking-extension-quote', args=[self.booking.pk])
        response = self.client.post(url, {'new_end_date': '2025-02-13'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['suggested_total'], Decimal('450.00'))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.planned_end, local_dt(2025, 2, 10, 11))

    def test_depart_action(self):
        response = self.client.post(reverse('booking-depart', args=[self.booking.pk]), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['booking']['status'], Booking.Status.COMPLETED)
        self.assertEqual(response.data['task']['task_type'], Task.Type.CLEANING)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.PENDING_CLEANING)

        response = self.client.post(reverse('booking-depart', args=[self.booking.pk]), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_depart_failure_is_reported(self):
        with mock.patch.object(Task.objects, 'create', side_effect=DatabaseError("disk full")):
            response = self.client.post(reverse('booking-depart', args=[self.booking.pk]), format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['failed_step'], 'create_cleaning_task')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.IN_PROGRESS)
