"""
Read-only financial and occupancy reports.

Payment aggregates always use each payment's stored USD equivalent, i.e. the
value at the rate it was recorded with.
"""

from django.db.models import Count, Max, Sum
from django.utils import timezone

from . import billing, room_status, services
from .models import Booking, Invoice, Payment, Room


def booking_financial_summary(booking, rate):
    invoices = booking.invoices.exclude(status=Invoice.Status.CANCELLED).aggregate(
        total=Sum('net_total'), count=Count('id'), last=Max('date'))
    payments = booking.payments.aggregate(
        total=Sum('amount'), count=Count('id'), last=Max('payment_date'))

    total_invoiced = billing.money(invoices['total'])
    total_paid = billing.money(payments['total'])
    difference = total_invoiced - total_paid
    balance_due = max(difference, billing.ZERO)
    return {
        'booking_id': booking.pk,
        'total_invoiced': total_invoiced,
        'total_paid': total_paid,
        'balance_due': balance_due,
        'credit': max(-difference, billing.ZERO),
        'balance_due_cdf': billing.to_cdf(balance_due, rate),
        'exchange_rate': rate,
        'invoice_count': invoices['count'],
        'payment_count': payments['count'],
        'last_invoice_date': invoices['last'],
        'last_payment_date': payments['last'],
    }


def cash_daily_summary(start=None, end=None):
    """Money received per day, most recent day first, with totals over the range."""
    payments = Payment.objects.all()
    if start is not None:
        payments = payments.filter(payment_date__gte=start)
    if end is not None:
        payments = payments.filter(payment_date__lte=end)

    methods = {}
    for day, method in payments.values_list('payment_date', 'method').distinct():
        methods.setdefault(day, set()).add(method)

    days = []
    rows = (payments.values('payment_date')
            .annotate(total_usd=Sum('amount_usd'),
                      total_cdf=Sum('amount_cdf'),
                      total_equivalent_usd=Sum('amount'),
                      payment_count=Count('id'))
            .order_by('-payment_date'))
    for row in rows:
        days.append({
            'date': row['payment_date'],
            'total_usd': billing.money(row['total_usd']),
            'total_cdf': billing.money(row['total_cdf']),
            'total_equivalent_usd': billing.money(row['total_equivalent_usd']),
            'payment_count': row['payment_count'],
            'methods': sorted(methods.get(row['payment_date'], ())),
        })

    return {
        'days': days,
        'total_usd': sum((d['total_usd'] for d in days), billing.ZERO),
        'total_cdf': sum((d['total_cdf'] for d in days), billing.ZERO),
        'total_equivalent_usd': sum((d['total_equivalent_usd'] for d in days), billing.ZERO),
        'payment_count': sum(d['payment_count'] for d in days),
    }


def overdue_debts(report_date=None):
    """Guests still in their room after the planned end of their stay.

    Each overdue night is owed at the room's nightly price. Worst first.
    """
    report_date = report_date or timezone.localdate()
    bookings = services.staying_bookings().select_related('room', 'tenant')
    debts = []
    for booking in bookings:
        days = (report_date - billing.local_day(booking.planned_end)).days
        if days <= 0:
            continue
        daily_rate = billing.money(booking.room.price_per_night)
        debts.append({
            'booking_id': booking.pk,
            'tenant_id': booking.tenant_id,
            'tenant_name': booking.tenant.full_name,
            'room_id': booking.room_id,
            'room_number': booking.room.number,
            'planned_start': booking.planned_start,
            'planned_end': booking.planned_end,
            'total_price': booking.total_price,
            'report_date': report_date,
            'overdue_days': days,
            'daily_rate': daily_rate,
            'debt_amount': billing.money(daily_rate * days),
        })
    debts.sort(key=lambda d: d['overdue_days'], reverse=True)
    return debts


def room_status_overview(at=None):
    at = at or timezone.now()
    bookings = Booking.objects.filter(
        status__in=(Booking.Status.CONFIRMED, Booking.Status.IN_PROGRESS, Booking.Status.COMPLETED),
        planned_start__lte=at,
        planned_end__gte=at,
    )
    return room_status.status_overview(Room.objects.all(), bookings, at)
