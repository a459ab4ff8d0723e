from decimal import Decimal

from django.core.management.base import BaseCommand
from hotel_backoffice.models import Room, Tenant
from hotel_backoffice.services import set_exchange_rate


class Command(BaseCommand):
    help = 'Populate database with sample rooms, tenants and the exchange rate'

    def add_arguments(self, parser):
        parser.add_argument('--rate', default='2800', help='USD to CDF exchange rate to store')

    def handle(self, *args, **options):
        rooms_data = [
            {
                'number': '101',
                'room_type': Room.Type.SINGLE,
                'floor': 1,
                'price_per_night': Decimal('35.00'),
                'price_per_week': Decimal('210.00'),
                'capacity': 1,
                'equipment': ['fan', 'wifi'],
                'description': 'Single room on the courtyard'
            },
            {
                'number': '102',
                'room_type': Room.Type.DOUBLE,
                'floor': 1,
                'price_per_night': Decimal('50.00'),
                'price_per_week': Decimal('300.00'),
                'capacity': 2,
                'equipment': ['air conditioning', 'wifi', 'tv'],
                'description': 'Double room with air conditioning'
            },
            {
                'number': '201',
                'room_type': Room.Type.STUDIO,
                'floor': 2,
                'price_per_night': Decimal('65.00'),
                'price_per_month': Decimal('1200.00'),
                'capacity': 2,
                'equipment': ['kitchenette', 'air conditioning', 'wifi'],
                'description': 'Studio with kitchenette, for long stays'
            },
            {
                'number': '301',
                'room_type': Room.Type.SUITE,
                'floor': 3,
                'price_per_night': Decimal('120.00'),
                'capacity': 4,
                'equipment': ['air conditioning', 'wifi', 'tv', 'minibar'],
                'description': 'Suite with living room'
            },
        ]

        for room_data in rooms_data:
            room, created = Room.objects.get_or_create(
                number=room_data['number'],
                defaults=room_data
            )

            if created:
                self.stdout.write(f'Created room: {room.number} - {room.room_type}')
            else:
                self.stdout.write(f'Room {room.number} already exists')

        tenants_data = [
            {'first_name': 'Grace', 'last_name': 'Mbuyi', 'phone': '+243 970 000 001'},
            {'first_name': 'Patrick', 'last_name': 'Kabongo', 'phone': '+243 970 000 002'},
        ]
        for tenant_data in tenants_data:
            tenant, created = Tenant.objects.get_or_create(
                first_name=tenant_data['first_name'],
                last_name=tenant_data['last_name'],
                defaults=tenant_data
            )
            if created:
                self.stdout.write(f'Created tenant: {tenant.full_name}')

        rate = set_exchange_rate(options['rate'])
        self.stdout.write(f'Exchange rate: 1 USD = {rate} CDF')

        self.stdout.write(
            self.style.SUCCESS('Successfully populated database with sample data')
        )
