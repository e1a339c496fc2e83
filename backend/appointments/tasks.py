"""Celery tasks for appointment reminders."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def dispatch_due_reminders():
    """
    Periodic sweep (see CELERY_BEAT_SCHEDULE) delivering survey requests and
    finalising confirmations whose survey window has closed.
    """
    from appointments.services import dispatch_due_reminders as sweep

    return sweep()
