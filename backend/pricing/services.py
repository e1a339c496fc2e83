import logging
import threading
from datetime import datetime
from typing import Optional

from django.utils import timezone

from pricing.exceptions import ConfigurationMissing
from pricing.models import PricingConfiguration
from pricing.rules import DEFAULT_RULES, FareAdjustmentPolicy, PricingRules

logger = logging.getLogger(__name__)

_rules_cache = {}
_rules_lock = threading.Lock()


def get_active_configuration() -> PricingConfiguration:
    config = PricingConfiguration.objects.filter(is_active=True).first()
    if config is None:
        logger.error("No active pricing configuration; fares cannot be computed")
        raise ConfigurationMissing()
    return config


def get_active_rules() -> PricingRules:
    """Rules for the active configuration, rebuilt only when the row changes."""
    config = get_active_configuration()
    key = (config.pk, config.updated_at)
    rules = _rules_cache.get(key)
    if rules is None:
        rules = PricingRules.from_document(config.document)
        with _rules_lock:
            _rules_cache.clear()
            _rules_cache[key] = rules
    return rules


def get_rules_or_defaults() -> PricingRules:
    """
    Rules for flows that must not stall on a missing configuration
    (cancellation charges, receipts, negotiation bands).
    """
    try:
        return get_active_rules()
    except ConfigurationMissing:
        return DEFAULT_RULES


def get_fare_adjustment_policy() -> FareAdjustmentPolicy:
    return get_rules_or_defaults().fare_adjustment


def is_night_time(rules: PricingRules, when: Optional[datetime] = None) -> bool:
    """Whether a trip starting at `when` (local time) falls in the night window."""
    when = timezone.localtime(when or timezone.now())
    return rules.night.covers_hour(when.hour)


def estimate_demand_ratio(service_type: str) -> float:
    """Open pending requests per available driver for a service type."""
    from bookings.models import Booking
    from drivers.directory import count_available_drivers

    pending = Booking.objects.filter(status=Booking.STATUS_PENDING, service_type=service_type).count()
    drivers = count_available_drivers(service_type)
    if not drivers:
        return float(pending) if pending else 1.0
    return pending / drivers
