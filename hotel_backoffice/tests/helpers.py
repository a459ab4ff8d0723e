from datetime import datetime
from decimal import Decimal

from django.utils import timezone

from hotel_backoffice.models import Booking, Room, Tenant


def local_dt(year, month, day, hour=0, minute=0):
    return timezone.make_aware(datetime(year, month, day, hour, minute))


def make_room(number="101", price="50.00", **extra):
    extra.setdefault('room_type', Room.Type.DOUBLE)
    extra.setdefault('capacity', 2)
    return Room.objects.create(number=number, price_per_night=Decimal(price), **extra)


def make_tenant(first_name="Grace", last_name="Mbuyi", **extra):
    return Tenant.objects.create(first_name=first_name, last_name=last_name, **extra)


def make_booking(room, tenant, start, end, total="300.00", status=Booking.Status.CONFIRMED, **extra):
    return Booking.objects.create(
        room=room,
        tenant=tenant,
        planned_start=start,
        planned_end=end,
        total_price=Decimal(total),
        status=status,
        **extra
    )
