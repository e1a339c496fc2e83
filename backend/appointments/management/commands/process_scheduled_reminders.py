from django.core.management.base import BaseCommand
from django.utils import timezone

from appointments.models import ScheduledReminder
from appointments.services import dispatch_due_reminders


class Command(BaseCommand):
    help = "Deliver due appointment survey reminders and finalise expired surveys."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show how many reminders are due without sending them.",
        )

    def handle(self, *args, **options):
        if options["dry_run"]:
            due = ScheduledReminder.objects.filter(sent_at__isnull=True, due_at__lte=timezone.now()).count()
            self.stdout.write(self.style.WARNING(f"DRY RUN: {due} reminder(s) due."))
            return

        delivered = dispatch_due_reminders()
        self.stdout.write(self.style.SUCCESS(f"Delivered {delivered} reminder(s)."))
