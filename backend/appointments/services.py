"""
Appointment completion surveys.

Completing an appointment opens a two-sided confirmation. Both parties are
asked whether the visit happened; their answers decide whether the fixed
appointment fee is charged. Timers are ScheduledReminder rows, so a worker
restart loses nothing: the reminder sweep picks up whatever is due.
"""

import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from pricing.engine import money
from pricing.services import get_rules_or_defaults
from realtime import notifications
from services.booking_management.exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    NotPermittedError,
    StateConflictError,
)
from .models import Appointment, AppointmentConfirmation, ScheduledReminder

logger = logging.getLogger(__name__)

CUSTOMER = 'customer'
PROVIDER = 'provider'

SURVEY_MESSAGES = {
    CUSTOMER: "Please rate your experience with the service provider",
    PROVIDER: "Please rate your experience with the customer",
}


# ==================== Appointments ====================

def create_appointment(customer, provider, service_category, scheduled_at, notes=""):
    if provider.role != "driver":
        raise BookingValidationError("Appointments must be booked with a service provider", code="invalid_provider")
    if provider.pk == customer.pk:
        raise BookingValidationError("You cannot book an appointment with yourself", code="invalid_provider")

    appointment = Appointment.objects.create(
        customer=customer,
        provider=provider,
        service_category=service_category,
        scheduled_at=scheduled_at,
        notes=notes,
    )
    logger.info("Appointment %s booked by %s with provider %s", appointment.id, customer.id, provider.id)
    return appointment


def load_appointment(appointment_id, for_update=False):
    queryset = Appointment.objects.select_related("customer", "provider")
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(id=appointment_id)
    except Appointment.DoesNotExist:
        raise BookingNotFoundError("Appointment not found", code="appointment_not_found")


def get_appointment_for(user, appointment_id):
    appointment = load_appointment(appointment_id)
    if user.pk not in (appointment.customer_id, appointment.provider_id):
        raise NotPermittedError("You are not a party to this appointment")
    return appointment


def _require_provider(provider, appointment):
    if appointment.provider_id != provider.pk:
        raise NotPermittedError("Only the assigned provider can update this appointment")


def _require_status(appointment, *allowed):
    if appointment.status not in allowed:
        raise StateConflictError(
            f"Appointment is {appointment.status}", code="invalid_state", status=appointment.status
        )


@transaction.atomic
def start_appointment(provider, appointment_id):
    appointment = load_appointment(appointment_id, for_update=True)
    _require_provider(provider, appointment)
    _require_status(appointment, Appointment.STATUS_SCHEDULED)

    appointment.status = Appointment.STATUS_IN_PROGRESS
    appointment.started_at = timezone.now()
    appointment.save(update_fields=["status", "started_at"])
    return appointment


@transaction.atomic
def cancel_appointment(user, appointment_id):
    appointment = load_appointment(appointment_id, for_update=True)
    if user.pk not in (appointment.customer_id, appointment.provider_id):
        raise NotPermittedError("You are not a party to this appointment")
    _require_status(appointment, Appointment.STATUS_SCHEDULED)

    appointment.status = Appointment.STATUS_CANCELLED
    appointment.save(update_fields=["status"])
    logger.info("Appointment %s cancelled by %s", appointment.id, user.id)
    return appointment


@transaction.atomic
def complete_appointment(provider, appointment_id):
    """
    Complete an appointment and open its confirmation.

    Schedules two reminders: the survey request, due immediately, and the
    finalisation at the survey deadline.

    Returns:
        The new AppointmentConfirmation
    """
    appointment = load_appointment(appointment_id, for_update=True)
    _require_provider(provider, appointment)
    _require_status(appointment, Appointment.STATUS_SCHEDULED, Appointment.STATUS_IN_PROGRESS)

    now = timezone.now()
    policy = get_rules_or_defaults().appointments

    appointment.status = Appointment.STATUS_COMPLETED
    appointment.completed_at = now
    appointment.save(update_fields=["status", "completed_at"])

    confirmation = AppointmentConfirmation.objects.create(
        appointment=appointment,
        deadline=now + timedelta(hours=policy.survey_timeout_hours),
    )
    ScheduledReminder.objects.bulk_create([
        ScheduledReminder(confirmation=confirmation, kind=ScheduledReminder.KIND_SURVEY_REQUEST, due_at=now),
        ScheduledReminder(confirmation=confirmation, kind=ScheduledReminder.KIND_FINALISE, due_at=confirmation.deadline),
    ])

    logger.info("Appointment %s completed; surveys due by %s", appointment.id, confirmation.deadline)
    return confirmation


# ==================== Surveys ====================

def _role_of(user, appointment):
    if user.pk == appointment.customer_id:
        return CUSTOMER
    if user.pk == appointment.provider_id:
        return PROVIDER
    raise NotPermittedError("You are not a party to this appointment")


def _allowed_answers(role):
    choices = (
        AppointmentConfirmation.CUSTOMER_ANSWERS if role == CUSTOMER
        else AppointmentConfirmation.PROVIDER_ANSWERS
    )
    return [value for value, _ in choices]


def _validate_answer(role, answer, rating, feedback):
    if answer not in _allowed_answers(role):
        raise BookingValidationError(
            f"Invalid answer '{answer}'", code="invalid_survey_answer", allowed=_allowed_answers(role)
        )
    if answer in AppointmentConfirmation.VISITED_ANSWERS:
        if rating is None or not 1 <= int(rating) <= 5:
            raise BookingValidationError("Rating must be between 1 and 5", code="invalid_rating")
    if feedback and len(feedback) > 500:
        raise BookingValidationError("Feedback is limited to 500 characters", code="feedback_too_long")


def decide(customer_answer, provider_answer):
    """
    Decision for a confirmation with both answers in.

    Returns:
        (status, reason)
    """
    visited = AppointmentConfirmation.VISITED_ANSWERS
    if customer_answer in visited and provider_answer in visited:
        return AppointmentConfirmation.STATUS_SUCCESSFUL, "Both parties confirmed the visit"
    if customer_answer not in visited and provider_answer not in visited:
        return AppointmentConfirmation.STATUS_UNSUCCESSFUL, "Both parties confirmed no visit took place"
    return AppointmentConfirmation.STATUS_DISPUTED, "Conflicting answers; requires admin review"


def _apply_decision(confirmation, status, reason):
    confirmation.status = status
    confirmation.decision_reason = reason
    confirmation.decided_at = timezone.now()
    if status == AppointmentConfirmation.STATUS_SUCCESSFUL:
        confirmation.fee_charged = money(get_rules_or_defaults().appointments.fixed_fee)
    confirmation.save(update_fields=["status", "decision_reason", "decided_at", "fee_charged"])
    logger.info(
        "Confirmation %s decided %s (fee %s): %s",
        confirmation.id, status, confirmation.fee_charged, reason,
    )
    notify_decision(confirmation)


@transaction.atomic
def submit_survey(confirmation_id, actor, answer, rating=None, feedback=""):
    """
    Record one party's survey answer. Once both answers are in the
    confirmation is decided immediately.

    Raises:
        NotPermittedError: actor is neither the customer nor the provider
        BookingValidationError: answer or rating out of range
        StateConflictError: already answered, already decided, or past the deadline
    """
    try:
        confirmation = (
            AppointmentConfirmation.objects.select_for_update()
            .select_related("appointment")
            .get(id=confirmation_id)
        )
    except AppointmentConfirmation.DoesNotExist:
        raise BookingNotFoundError("Confirmation not found", code="confirmation_not_found")

    role = _role_of(actor, confirmation.appointment)
    _validate_answer(role, answer, rating, feedback)

    if confirmation.is_decided:
        raise StateConflictError("This appointment has already been decided", code="survey_closed")
    if timezone.now() >= confirmation.deadline:
        raise StateConflictError("The survey window has closed", code="survey_closed")
    if getattr(confirmation, f"{role}_answer"):
        raise StateConflictError("You have already answered this survey", code="survey_already_submitted")

    setattr(confirmation, f"{role}_answer", answer)
    setattr(confirmation, f"{role}_rating", rating if answer in AppointmentConfirmation.VISITED_ANSWERS else None)
    setattr(confirmation, f"{role}_feedback", feedback or "")
    setattr(confirmation, f"{role}_submitted_at", timezone.now())
    confirmation.save()

    if confirmation.customer_answer and confirmation.provider_answer:
        _apply_decision(confirmation, *decide(confirmation.customer_answer, confirmation.provider_answer))

    return confirmation


@transaction.atomic
def finalise_confirmation(confirmation_id):
    """
    Close a confirmation whose deadline passed. A single positive answer
    carries the decision; otherwise it expires without a fee.
    """
    confirmation = AppointmentConfirmation.objects.select_for_update().get(id=confirmation_id)
    if confirmation.is_decided:
        return confirmation

    visited = AppointmentConfirmation.VISITED_ANSWERS
    answers = [a for a in (confirmation.customer_answer, confirmation.provider_answer) if a]
    if answers and all(answer in visited for answer in answers):
        _apply_decision(confirmation, AppointmentConfirmation.STATUS_SUCCESSFUL, "Visit confirmed by one party before the deadline")
    else:
        _apply_decision(confirmation, AppointmentConfirmation.STATUS_EXPIRED, "No confirmation before the deadline")
    return confirmation


# ==================== Notifications ====================

def notify_survey_requests(confirmation):
    appointment = confirmation.appointment
    for role, notify, user_id in (
        (CUSTOMER, notifications.notify_user_event, appointment.customer_id),
        (PROVIDER, notifications.notify_driver_event, appointment.provider_id),
    ):
        if getattr(confirmation, f"{role}_answer"):
            continue
        notify(user_id, "survey_request", {
            "appointmentId": appointment.id,
            "confirmationId": confirmation.id,
            "surveyType": role,
            "deadline": confirmation.deadline,
            "message": SURVEY_MESSAGES[role],
        })


def notify_decision(confirmation):
    appointment = confirmation.appointment
    payload = {
        "appointmentId": appointment.id,
        "confirmationId": confirmation.id,
        "decision": confirmation.status,
        "feeCharged": confirmation.fee_charged,
        "message": confirmation.decision_reason,
    }
    notifications.notify_user_event(appointment.customer_id, "appointment_confirmation_decided", payload)
    notifications.notify_driver_event(appointment.provider_id, "appointment_confirmation_decided", payload)


# ==================== Reminder sweep ====================

def dispatch_due_reminders(now=None, batch_size=100):
    """
    Deliver every due, unsent reminder.

    Rows are claimed with SKIP LOCKED so concurrent workers never deliver
    the same reminder twice.

    Returns:
        Number of reminders delivered
    """
    now = now or timezone.now()
    delivered = 0

    with transaction.atomic():
        due = list(
            ScheduledReminder.objects.select_for_update(skip_locked=True, of=("self",))
            .filter(sent_at__isnull=True, due_at__lte=now)
            .select_related("confirmation__appointment")[:batch_size]
        )
        for reminder in due:
            confirmation = reminder.confirmation
            if reminder.kind == ScheduledReminder.KIND_SURVEY_REQUEST:
                if not confirmation.is_decided:
                    notify_survey_requests(confirmation)
            else:
                finalise_confirmation(confirmation.id)

            reminder.sent_at = now
            reminder.save(update_fields=["sent_at"])
            delivered += 1

    if delivered:
        logger.info("Delivered %s scheduled reminder(s)", delivered)
    return delivered
