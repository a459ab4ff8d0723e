from django.core.management.base import BaseCommand
from hotel_backoffice.services import flag_pending_checkouts


class Command(BaseCommand):
    help = 'Flag PENDING_CHECKOUT the occupied rooms whose stay is past its planned end'

    def handle(self, *args, **options):
        rooms = flag_pending_checkouts()
        for room in rooms:
            self.stdout.write(f'Room {room.number} is due for checkout')
        self.stdout.write(self.style.SUCCESS(f'{len(rooms)} room(s) flagged'))
