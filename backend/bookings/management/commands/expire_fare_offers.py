from django.core.management.base import BaseCommand
from django.utils import timezone

from bookings.models import DriverFareOffer
from services.booking_management import sweep_expired_offers


class Command(BaseCommand):
    help = "Expire driver fare offers past their deadline and refresh the customers' offer lists."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show how many offers would expire without changing anything.",
        )

    def handle(self, *args, **options):
        if options["dry_run"]:
            due = DriverFareOffer.objects.filter(status="pending", expires_at__lte=timezone.now()).count()
            self.stdout.write(self.style.WARNING(f"DRY RUN: {due} offer(s) would expire."))
            return

        expired = sweep_expired_offers()
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} driver fare offer(s)."))
