from django.core.management.base import BaseCommand
from pricing.defaults import default_document
from pricing.models import PricingConfiguration
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Install the default pricing document and make it the active configuration."

    def add_arguments(self, parser):
        parser.add_argument(
            "--name",
            default="default",
            help="Name of the configuration row to create or reset (default: default).",
        )
        parser.add_argument(
            "--keep-active",
            action="store_true",
            help="Only create the row if no configuration is active yet.",
        )

    def handle(self, *args, **options):
        name = options["name"]
        if options["keep_active"] and PricingConfiguration.objects.filter(is_active=True).exists():
            self.stdout.write(self.style.WARNING("An active pricing configuration already exists; nothing to do."))
            return

        config, created = PricingConfiguration.objects.update_or_create(
            name=name,
            defaults={"document": default_document()},
        )
        config.activate()
        logger.info("Pricing configuration %s %s and activated", name, "created" if created else "reset")
        self.stdout.write(
            self.style.SUCCESS(f"{'Created' if created else 'Reset'} pricing configuration '{name}' and activated it.")
        )
