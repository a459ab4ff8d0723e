"""
Booking lifecycle, invoicing and payment operations.

Every function here validates before it mutates. Single-record changes run
in one ``transaction.atomic()`` block; the departure and stay-extension
flows are sagas (see ``saga.py``) so that a failure partway is undone step
by step instead of leaving half an operation behind.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Exists, OuterRef, Q, Sum
from django.utils import timezone
from rest_framework import serializers

from . import billing
from .exceptions import InvalidTransition
from .models import Booking, Incident, Invoice, InvoiceItem, Payment, Room, RoomStatus, Setting, Task
from .saga import Saga

logger = logging.getLogger(__name__)

EXCHANGE_RATE_KEY = 'exchange_rate'

CHECK_IN_READY = (RoomStatus.AVAILABLE, RoomStatus.PENDING_CLEANING)
GUEST_IN_ROOM = (RoomStatus.OCCUPIED, RoomStatus.PENDING_CHECKOUT)
MAINTENANCE_LABELS = (RoomStatus.MAINTENANCE, RoomStatus.LEGACY_MAINTENANCE)
OCCUPIED_LABELS = (RoomStatus.OCCUPIED, RoomStatus.LEGACY_OCCUPIED)


def app_setting(name):
    return settings.HOTEL_BACKOFFICE[name]


# -- exchange rate -----------------------------------------------------------

def current_exchange_rate():
    """CDF per 1 USD as configured now, or the default rate when unset."""
    default = Decimal(str(app_setting('DEFAULT_USD_TO_CDF_RATE')))
    setting = Setting.objects.filter(key=EXCHANGE_RATE_KEY).first()
    value = setting.value.get('usd_to_cdf') if setting and isinstance(setting.value, dict) else None
    if not value:
        return default
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        logger.warning("Ignoring unreadable exchange rate setting %r", value)
        return default
    return rate if rate > 0 else default


def set_exchange_rate(rate):
    rate = billing.to_decimal(rate)
    if rate <= 0:
        raise serializers.ValidationError({'usd_to_cdf': 'Exchange rate must be positive.'})
    Setting.objects.update_or_create(key=EXCHANGE_RATE_KEY, defaults={'value': {'usd_to_cdf': str(rate)}})
    logger.info("Exchange rate set to %s CDF per USD", rate)
    return rate


# -- availability ------------------------------------------------------------

def overlapping_bookings(room, start, end, exclude=None):
    qs = Booking.objects.filter(
        room=room,
        status__in=Booking.BLOCKING_STATUSES,
        planned_start__lt=end,
        planned_end__gt=start,
    )
    if exclude is not None:
        qs = qs.exclude(pk=exclude.pk)
    return qs


def available_rooms_qs(start, end, max_price=None):
    overlap = Exists(
        Booking.objects.filter(
            room=OuterRef('pk'),
            status__in=Booking.BLOCKING_STATUSES,
            planned_start__lt=end,
            planned_end__gt=start,
        )
    )
    qs = Room.objects.annotate(has_overlap=overlap).filter(has_overlap=False).exclude(status__in=MAINTENANCE_LABELS)
    if max_price is not None:
        qs = qs.filter(price_per_night__lte=max_price)
    return qs


def checkout_datetime(day):
    """``day`` at the configured checkout hour, local time."""
    day = billing.local_day(day)
    return timezone.make_aware(datetime.combine(day, time(hour=app_setting('CHECKOUT_HOUR'))))


def _set_room_status(room_id, status):
    Room.objects.filter(pk=room_id).update(status=status, updated_at=timezone.now())


# -- invoices ----------------------------------------------------------------

def next_invoice_number(day=None):
    day = day or timezone.localdate()
    prefix = f"FACT-{day:%Y%m%d}-"
    last = (Invoice.objects.filter(invoice_number__startswith=prefix)
            .order_by('-invoice_number')
            .values_list('invoice_number', flat=True)
            .first())
    sequence = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{sequence:03d}"


TOTAL_FIELDS = ('subtotal', 'tax_amount', 'total', 'discount_amount', 'discount_percentage', 'net_total')


def _apply_totals(invoice, totals):
    for name in TOTAL_FIELDS:
        setattr(invoice, name, getattr(totals, name))


def create_invoice(booking, items, *, tax_rate=None, discount_amount=None, discount_percentage=None,
                   status=Invoice.Status.ISSUED, notes='', period_start=None, period_end=None, due_date=None):
    totals = billing.calculate_invoice_totals(items, tax_rate, discount_amount, discount_percentage)
    invoice = Invoice.objects.create(
        invoice_number=next_invoice_number(),
        booking=booking,
        tenant_id=booking.tenant_id,
        status=status,
        due_date=due_date or timezone.localdate() + timedelta(days=app_setting('INVOICE_DUE_DAYS')),
        tax_rate=billing.to_decimal(tax_rate),
        notes=notes,
        period_start=period_start,
        period_end=period_end,
        **{name: getattr(totals, name) for name in TOTAL_FIELDS},
    )
    InvoiceItem.objects.bulk_create([
        InvoiceItem(
            invoice=invoice,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total=item.total,
        )
        for item in items
    ])
    logger.info("Invoice %s issued for booking %s: net %s USD", invoice.invoice_number, booking.pk, invoice.net_total)
    return invoice


def refresh_invoice_payments(invoice):
    """Recompute the denormalised amount paid and the payment status of an invoice."""
    paid = invoice.payments.aggregate(total=Sum('amount'))['total'] or billing.ZERO
    invoice.amount_paid = billing.money(paid)
    invoice.status = billing.invoice_status(invoice.status, invoice.net_total, invoice.amount_paid)
    invoice.save(update_fields=['amount_paid', 'status', 'updated_at'])
    return invoice


def apply_invoice_discount(invoice, amount=None, percentage=None):
    """Recompute an invoice's totals with a new discount; no discount removes it."""
    if invoice.status == Invoice.Status.CANCELLED:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} is cancelled.")
    items = [billing.LineItem(i.description, i.quantity, i.unit_price) for i in invoice.items.all()]
    _apply_totals(invoice, billing.calculate_invoice_totals(items, invoice.tax_rate, amount, percentage))
    invoice.status = billing.invoice_status(invoice.status, invoice.net_total, invoice.amount_paid)
    invoice.save()
    return invoice


# -- payments ----------------------------------------------------------------

def _payable_invoice(booking, invoice):
    if invoice is None:
        return (booking.invoices.filter(status__in=Invoice.OPEN_STATUSES)
                .order_by('date', 'id')
                .first())
    if invoice.booking_id != booking.pk:
        raise serializers.ValidationError({'invoice_id': 'Invoice does not belong to this booking.'})
    if invoice.status == Invoice.Status.CANCELLED:
        raise serializers.ValidationError({'invoice_id': 'Cannot pay a cancelled invoice.'})
    return invoice


def record_payment(booking, amount_usd=None, amount_cdf=None, *, method=Payment.Method.CASH, invoice=None,
                   payment_date=None, notes='', rate=None):
    """Record money received for a booking.

    The payment keeps the exchange rate it was made at; its USD value is
    fixed at that rate. Without an explicit invoice the oldest open invoice
    of the booking is credited.
    """
    rate = billing.to_decimal(rate) if rate else current_exchange_rate()
    amount = billing.usd_equivalent(amount_usd, amount_cdf, rate)
    if amount <= 0:
        raise serializers.ValidationError({'amount': 'Payment amount must be positive.'})
    invoice = _payable_invoice(booking, invoice)

    with transaction.atomic():
        payment = Payment.objects.create(
            booking=booking,
            invoice=invoice,
            amount=amount,
            amount_usd=billing.money(amount_usd),
            amount_cdf=billing.money(amount_cdf),
            exchange_rate=rate,
            method=method,
            payment_date=payment_date or timezone.localdate(),
            notes=notes,
        )
        if invoice is not None:
            refresh_invoice_payments(invoice)
    logger.info("Payment %s recorded for booking %s: %s USD + %s CDF at %s = %s USD",
                payment.pk, booking.pk, payment.amount_usd, payment.amount_cdf, rate, amount)
    return payment


PAYMENT_EDITABLE_FIELDS = ('amount_usd', 'amount_cdf', 'method', 'payment_date', 'notes', 'invoice')


def update_payment(payment, **changes):
    previous_invoice = payment.invoice
    for name in PAYMENT_EDITABLE_FIELDS:
        if name in changes:
            setattr(payment, name, changes[name])
    if payment.invoice is not None:
        _payable_invoice(payment.booking, payment.invoice)
    payment.amount_usd = billing.money(payment.amount_usd)
    payment.amount_cdf = billing.money(payment.amount_cdf)
    payment.amount = billing.usd_equivalent(payment.amount_usd, payment.amount_cdf, payment.exchange_rate)
    if payment.amount <= 0:
        raise serializers.ValidationError({'amount': 'Payment amount must be positive.'})

    with transaction.atomic():
        payment.save()
        for invoice in {previous_invoice, payment.invoice} - {None}:
            refresh_invoice_payments(invoice)
    return payment


def delete_payment(payment):
    invoice = payment.invoice
    with transaction.atomic():
        payment.delete()
        if invoice is not None:
            refresh_invoice_payments(invoice)
    logger.info("Payment deleted from booking %s", payment.booking_id)


# -- booking lifecycle -------------------------------------------------------

def create_booking(room, tenant, planned_start, planned_end, *, status=Booking.Status.PENDING, total_price=None,
                   deposit=None, notes='', discount_per_night=None, tax_rate=None,
                   initial_payment_usd=None, initial_payment_cdf=None, payment_method=Payment.Method.CASH,
                   check_in_now=False, rate=None):
    """Book a room and issue the stay invoice.

    With ``check_in_now`` the stay starts immediately: the booking is
    created IN_PROGRESS and the room becomes OCCUPIED.
    """
    if tenant.is_blacklisted:
        raise serializers.ValidationError({'tenant_id': 'This tenant is blacklisted.'})
    now = timezone.now()
    if check_in_now:
        planned_start = now
    if planned_end <= planned_start:
        raise serializers.ValidationError({'planned_end': 'Planned end must be after planned start.'})

    nights = billing.calendar_nights(planned_start, planned_end)
    if total_price is None:
        total_price = billing.stay_price(room.price_per_night, nights, discount_per_night)

    with transaction.atomic():
        room = Room.objects.select_for_update().get(pk=room.pk)
        if overlapping_bookings(room, planned_start, planned_end).exists():
            raise serializers.ValidationError("Room is not available for the selected dates")
        if check_in_now and room.physical_status not in CHECK_IN_READY:
            raise InvalidTransition(f"Room {room.number} is not ready for check-in ({room.status}).")

        booking = Booking.objects.create(
            room=room,
            tenant=tenant,
            planned_start=planned_start,
            planned_end=planned_end,
            actual_check_in=now if check_in_now else None,
            total_price=billing.money(total_price),
            deposit=billing.money(deposit),
            status=Booking.Status.IN_PROGRESS if check_in_now else status,
            notes=notes,
        )
        if check_in_now:
            room.status = RoomStatus.OCCUPIED
            room.save(update_fields=['status', 'updated_at'])

        invoice = create_invoice(
            booking,
            billing.stay_items(room, planned_start, planned_end, deposit),
            tax_rate=tax_rate,
            discount_amount=billing.to_decimal(discount_per_night) * max(nights, 0),
            period_start=planned_start,
            period_end=planned_end,
            due_date=billing.local_day(planned_end),
        )
        if billing.to_decimal(initial_payment_usd) > 0 or billing.to_decimal(initial_payment_cdf) > 0:
            record_payment(
                booking, initial_payment_usd, initial_payment_cdf,
                method=payment_method,
                invoice=invoice,
                rate=rate,
                notes='Payment at check-in' if check_in_now else 'Booking deposit',
            )

    logger.info("Booking %s created for room %s (%s, %s nights)", booking.pk, room.number, booking.status, nights)
    return booking


def check_in(booking, at=None):
    at = at or timezone.now()
    if not booking.can_transition_to(Booking.Status.IN_PROGRESS):
        raise InvalidTransition(f"Booking {booking.pk} cannot be checked in from {booking.status}.")

    with transaction.atomic():
        room = Room.objects.select_for_update().get(pk=booking.room_id)
        if room.physical_status not in CHECK_IN_READY:
            raise InvalidTransition(f"Room {room.number} is not ready for check-in ({room.status}).")
        booking.transition_to(Booking.Status.IN_PROGRESS)
        booking.actual_check_in = at
        booking.save(update_fields=['status', 'actual_check_in', 'updated_at'])
        room.status = RoomStatus.OCCUPIED
        room.save(update_fields=['status', 'updated_at'])
    booking.room = room
    logger.info("Booking %s checked in to room %s", booking.pk, room.number)
    return booking


def cancel_booking(booking, reason=''):
    """Cancel a booking and release its room.

    A guest who was already in the room leaves it to be cleaned. Otherwise
    the room is only released when it is still marked occupied without any
    stay in progress.
    """
    if not booking.can_transition_to(Booking.Status.CANCELLED):
        raise InvalidTransition(f"Booking {booking.pk} cannot be cancelled from {booking.status}.")
    was_in_room = booking.guest_in_room

    with transaction.atomic():
        room = Room.objects.select_for_update().get(pk=booking.room_id)
        booking.transition_to(Booking.Status.CANCELLED)
        if reason:
            booking.notes = f"{booking.notes}\nCancelled: {reason}".strip()
        booking.save(update_fields=['status', 'notes', 'updated_at'])

        physical = room.physical_status
        if physical != RoomStatus.MAINTENANCE:
            if was_in_room:
                room.status = RoomStatus.PENDING_CLEANING
                room.save(update_fields=['status', 'updated_at'])
            elif physical in GUEST_IN_ROOM and not staying_bookings().filter(room=room).exists():
                room.status = RoomStatus.AVAILABLE
                room.save(update_fields=['status', 'updated_at'])

        booking.invoices.filter(status__in=Invoice.OPEN_STATUSES, amount_paid=0).update(
            status=Invoice.Status.CANCELLED, updated_at=timezone.now())
    booking.room = room
    logger.info("Booking %s cancelled (room %s now %s)", booking.pk, room.number, room.status)
    return booking


def staying_bookings(at=None):
    """Bookings whose guest is in the room at ``at``.

    An extended stay is CONFIRMED again: it counts once checked in, or while
    its period has started and the room is still marked occupied.
    """
    at = at or timezone.now()
    return Booking.objects.filter(
        Q(status=Booking.Status.IN_PROGRESS)
        | Q(status=Booking.Status.CONFIRMED, actual_check_in__isnull=False, actual_check_out__isnull=True)
        | Q(status=Booking.Status.CONFIRMED, planned_start__lte=at,
            room__status__in=OCCUPIED_LABELS + (RoomStatus.PENDING_CHECKOUT,))
    )


def pending_checkouts(at=None):
    """Stays due to end, or whose room is flagged for checkout."""
    at = at or timezone.now()
    return (staying_bookings(at)
            .filter(Q(planned_end__lte=at) | Q(room__status=RoomStatus.PENDING_CHECKOUT))
            .select_related('room', 'tenant')
            .order_by('planned_end'))


def flag_pending_checkouts(at=None):
    """Flag PENDING_CHECKOUT the occupied rooms whose stay is past its planned end."""
    at = at or timezone.now()
    room_ids = (staying_bookings(at)
                .filter(planned_end__lte=at)
                .values_list('room_id', flat=True))
    rooms = list(Room.objects.filter(pk__in=room_ids, status__in=OCCUPIED_LABELS))
    for room in rooms:
        room.status = RoomStatus.PENDING_CHECKOUT
        room.save(update_fields=['status', 'updated_at'])
    if rooms:
        logger.info("Flagged %d room(s) for checkout: %s", len(rooms), ", ".join(r.number for r in rooms))
    return rooms


@dataclass
class DepartureResult:
    booking: Booking
    room: Room
    task: Task


def depart(booking, at=None):
    """Close a stay: booking COMPLETED, room PENDING_CLEANING, cleaning task created."""
    at = at or timezone.now()
    if not booking.can_transition_to(Booking.Status.COMPLETED):
        raise InvalidTransition(f"Booking {booking.pk} cannot be completed from {booking.status}.")
    room = Room.objects.get(pk=booking.room_id)
    previous_status, previous_checkout = booking.status, booking.actual_check_out
    previous_room_status = room.status

    def complete_booking():
        Booking.objects.filter(pk=booking.pk).update(
            status=Booking.Status.COMPLETED, actual_check_out=at, updated_at=timezone.now())

    def reopen_booking(_):
        Booking.objects.filter(pk=booking.pk).update(status=previous_status, actual_check_out=previous_checkout)

    def create_cleaning_task():
        return Task.objects.create(
            room=room,
            task_type=Task.Type.CLEANING,
            description=f"Cleaning after departure (booking {booking.pk})",
        )

    results = (Saga('departure')
               .step('complete_booking', complete_booking, reopen_booking)
               .step('mark_room_for_cleaning',
                     lambda: _set_room_status(room.pk, RoomStatus.PENDING_CLEANING),
                     lambda _: _set_room_status(room.pk, previous_room_status))
               .step('create_cleaning_task', create_cleaning_task, lambda task: task.delete())
               .run())

    booking.refresh_from_db()
    room.refresh_from_db()
    booking.room = room
    logger.info("Booking %s completed, room %s waiting for cleaning", booking.pk, room.number)
    return DepartureResult(booking, room, results['create_cleaning_task'])


@dataclass
class ExtensionResult:
    booking: Booking
    invoice: Optional[Invoice]
    quote: billing.ExtensionQuote


def extension_quote(booking, new_end_date, discount_per_night=None):
    return billing.calculate_extension(
        booking.planned_end,
        checkout_datetime(new_end_date),
        booking.room.price_per_night,
        booking.total_price,
        discount_per_night,
    )


def extend_stay(booking, new_end_date, discount_per_night=None, new_total=None):
    """Push back the planned end of a stay and bill the extra nights.

    The booking total grows by the extension's net price unless the
    operator gives ``new_total``. An invoice covering only the extension is
    issued when the extension costs something.
    """
    if booking.status != Booking.Status.CONFIRMED and not booking.can_transition_to(Booking.Status.CONFIRMED):
        raise InvalidTransition(f"Booking {booking.pk} cannot be extended from {booking.status}.")
    if billing.to_decimal(discount_per_night) < 0:
        raise serializers.ValidationError({'discount_per_night': 'Discount cannot be negative.'})

    room = Room.objects.get(pk=booking.room_id)
    old_end = booking.planned_end
    new_end = checkout_datetime(new_end_date)
    quote = billing.calculate_extension(old_end, new_end, room.price_per_night, booking.total_price,
                                        discount_per_night)
    if new_total is not None:
        total = billing.money(new_total)
        if total <= 0:
            raise serializers.ValidationError({'new_total': 'Total price must be greater than zero.'})
    else:
        total = quote.new_total
    if overlapping_bookings(room, old_end, new_end, exclude=booking).exists():
        raise serializers.ValidationError("Room is not available for the extension dates")

    previous = dict(planned_end=booking.planned_end, total_price=booking.total_price, status=booking.status)
    previous_room_status = room.status

    saga = Saga('stay extension').step(
        'update_booking',
        lambda: Booking.objects.filter(pk=booking.pk).update(
            planned_end=new_end, total_price=total, status=Booking.Status.CONFIRMED, updated_at=timezone.now()),
        lambda _: Booking.objects.filter(pk=booking.pk).update(**previous),
    )
    if room.physical_status == RoomStatus.PENDING_CHECKOUT:
        saga.step(
            'reopen_room',
            lambda: _set_room_status(room.pk, RoomStatus.OCCUPIED),
            lambda _: _set_room_status(room.pk, previous_room_status),
        )
    if quote.needs_invoice:
        saga.step(
            'create_invoice',
            lambda: create_invoice(
                booking,
                billing.stay_items(room, old_end, new_end, label="Stay extension"),
                discount_amount=quote.discount_extra,
                period_start=old_end,
                period_end=new_end,
                notes=f"Stay extension invoice ({quote.discount_extra / quote.additional_nights:.2f} USD "
                      f"discount per night)",
            ),
            lambda invoice: invoice.delete(),
        )
    results = saga.run()

    booking.refresh_from_db()
    logger.info("Booking %s extended by %d night(s) to %s, total %s USD",
                booking.pk, quote.additional_nights, new_end, booking.total_price)
    return ExtensionResult(booking, results.get('create_invoice'), quote)


class CheckoutDecision:
    """What happens to a stay that reached its planned end.

    Starts in CHOICE; the operator either confirms the departure or extends
    the stay, once.
    """

    CHOICE = 'CHOICE'
    DEPART = 'DEPART'
    EXTEND = 'EXTEND'

    def __init__(self, booking):
        self.booking = booking
        self.state = self.CHOICE
        self.result = None

    def _ensure_open(self):
        if self.state != self.CHOICE:
            raise InvalidTransition(f"Checkout of booking {self.booking.pk} already decided: {self.state}.")

    def extension_quote(self, new_end_date, discount_per_night=None):
        return extension_quote(self.booking, new_end_date, discount_per_night)

    def depart(self, at=None):
        self._ensure_open()
        self.result = depart(self.booking, at)
        self.state = self.DEPART
        return self.result

    def extend(self, new_end_date, discount_per_night=None, new_total=None):
        self._ensure_open()
        self.result = extend_stay(self.booking, new_end_date, discount_per_night, new_total)
        self.state = self.EXTEND
        return self.result


# -- rooms and housekeeping ---------------------------------------------------

def set_maintenance(room, enabled):
    if enabled:
        if room.physical_status in GUEST_IN_ROOM:
            raise InvalidTransition(f"Room {room.number} is occupied.")
        room.status = RoomStatus.MAINTENANCE
    else:
        if room.physical_status != RoomStatus.MAINTENANCE:
            raise InvalidTransition(f"Room {room.number} is not under maintenance.")
        room.status = RoomStatus.AVAILABLE
    room.save(update_fields=['status', 'updated_at'])
    logger.info("Room %s maintenance %s", room.number, "on" if enabled else "off")
    return room


def complete_task(task, at=None):
    """Mark a task done; finishing a cleaning makes its room available again."""
    if task.status == Task.Status.COMPLETED:
        raise InvalidTransition(f"Task {task.pk} is already completed.")
    with transaction.atomic():
        task.status = Task.Status.COMPLETED
        task.completed_at = at or timezone.now()
        task.save(update_fields=['status', 'completed_at', 'updated_at'])
        room = Room.objects.select_for_update().get(pk=task.room_id)
        if task.task_type == Task.Type.CLEANING and room.physical_status == RoomStatus.PENDING_CLEANING:
            room.status = RoomStatus.AVAILABLE
            room.save(update_fields=['status', 'updated_at'])
    task.room = room
    return task


# -- incidents ---------------------------------------------------------------

def resolve_incident(incident, at=None):
    if incident.status == Incident.Status.RESOLVED:
        raise InvalidTransition(f"Incident {incident.pk} is already resolved.")
    incident.status = Incident.Status.RESOLVED
    incident.resolved_at = at or timezone.now()
    incident.save(update_fields=['status', 'resolved_at', 'updated_at'])
    logger.info("Incident %s on room %s resolved", incident.pk, incident.room.number)
    return incident
