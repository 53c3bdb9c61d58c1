from django.core.management.base import BaseCommand
from django.utils import timezone

from bookings.services.lifecycle import complete_elapsed_bookings


class Command(BaseCommand):
    help = "Mark confirmed bookings whose time window has ended as completed."

    def handle(self, *args, **options):
        completed = complete_elapsed_bookings(now=timezone.now())
        self.stdout.write(self.style.SUCCESS(f"Completed {completed} booking(s)."))
