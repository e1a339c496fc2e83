"""Celery tasks for booking-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_stale_fare_offers():
    """
    Periodic sweep (see CELERY_BEAT_SCHEDULE) that expires lapsed driver fare
    offers and refreshes the affected customers' offer lists. Reads and
    writes already expire offers lazily; this keeps idle bookings tidy.
    """
    from services.booking_management import sweep_expired_offers

    expired = sweep_expired_offers()
    if expired:
        logger.info("Offer sweep expired %s offer(s)", expired)
    return expired
