"""
Fare bargaining between a customer and a driver.

One proposal may be open per booking. The other party answers it with accept,
reject or counter; a counter is itself the next open proposal. Every step is
a ledger entry and every write bumps the booking's version through a
conditional UPDATE, so two answers to the same proposal cannot both land.

Parties:
    - accepted booking: the customer and the assigned driver. A proposal here
      blocks the ride from starting until it is answered.
    - pending booking: any driver who has not declined may propose to the
      customer, who may answer or counter.
"""

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking, FareNegotiationEntry
from pricing.services import get_fare_adjustment_policy
from .bands import require_within_band
from .exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    NotPermittedError,
    StateConflictError,
)
from .ledger import append_entry, entry_parties, history, is_expired, open_proposal, original_fare
from .lifecycle import (
    BookingResult,
    announce_acceptance,
    assign_driver,
    get_booking_for,
    load_booking,
    notify_driver,
    notify_requester,
    notify_status_change,
    reject_competing_offers,
    require_driver_free,
    require_status,
)

logger = logging.getLogger(__name__)

RESPONSE_ACTIONS = ("accept", "reject", "counter")

EVENT_FOR_KIND = {
    FareNegotiationEntry.KIND_PROPOSAL: "fare_negotiation_proposed",
    FareNegotiationEntry.KIND_COUNTER: "fare_negotiation_countered",
    FareNegotiationEntry.KIND_ACCEPT: "fare_negotiation_accepted",
    FareNegotiationEntry.KIND_REJECT: "fare_negotiation_rejected",
}


def proposal_ttl() -> timedelta:
    return timedelta(minutes=settings.NEGOTIATION_PROPOSAL_TTL_MINUTES)


def _proposal_parties(actor, booking: Booking):
    """(role, counterparty) for someone opening a proposal."""
    if booking.status == Booking.STATUS_ACCEPTED:
        if actor.id == booking.requester_id:
            return "user", booking.driver
        if actor.id == booking.driver_id:
            return "driver", booking.requester
        raise NotPermittedError("Only the customer and the assigned driver can negotiate this fare")

    if actor.id == booking.requester_id:
        raise NotPermittedError(
            "Raise your fare or answer a driver's proposal instead", code="proposal_not_allowed"
        )
    if not getattr(actor, "is_driver", False):
        raise NotPermittedError("Only drivers can propose a fare on a pending booking")
    if booking.rejections.filter(driver=actor).exists():
        raise NotPermittedError("You declined this booking", code="booking_declined")
    return "driver", booking.requester


def _require_enabled(policy, role: str):
    enabled = policy.enable_user_adjustment if role == "user" else policy.enable_driver_adjustment
    if not enabled:
        raise NotPermittedError("Fare adjustment is disabled", code="adjustment_disabled")


def _bump_version(booking: Booking, expected_version=None, statuses=None, **updates) -> Booking:
    version = booking.version if expected_version is None else int(expected_version)
    statuses = statuses or (booking.status,)
    now = timezone.now()
    updated = Booking.objects.filter(
        pk=booking.pk, version=version, status__in=statuses
    ).update(version=F("version") + 1, updated_at=now, **updates)
    if not updated:
        raise StateConflictError(
            "Booking was changed by someone else; refresh and try again", code="version_conflict"
        )
    booking.refresh_from_db()
    return booking


def _driver_party(booking: Booking, entry: FareNegotiationEntry) -> Optional[int]:
    if booking.driver_id:
        return booking.driver_id
    if entry.offered_by_role == "driver":
        return entry.offered_by_id
    return entry.counterparty_id


def publish_entry(booking: Booking, entry: FareNegotiationEntry, message: str = ""):
    event = EVENT_FOR_KIND[entry.kind]
    payload = {
        "bookingId": booking.id,
        "entryId": entry.id,
        "sequence": entry.sequence,
        "offeredBy": entry.offered_by_id,
        "offeredByRole": entry.offered_by_role,
        "amount": float(entry.amount),
        "originalFare": float(original_fare(booking)),
        "currentFare": float(booking.fare),
        "status": entry.status,
        "expiresAt": entry.expires_at,
        "message": message,
    }
    notify_requester(booking, event, payload)
    notify_driver(_driver_party(booking, entry), event, payload)


@transaction.atomic
def propose_fare(actor, booking_id, amount, expected_version=None) -> BookingResult:
    """
    Open a fare proposal.

    Raises:
        StateConflictError: wrong status, a proposal already open, or a stale version
        NotPermittedError: actor is not a party, or adjustment disabled for their side
        FareOutOfBandError: amount outside the band around the original fare
    """
    booking = load_booking(booking_id)
    require_status(booking, Booking.STATUS_PENDING, Booking.STATUS_ACCEPTED)
    role, counterparty = _proposal_parties(actor, booking)

    policy = get_fare_adjustment_policy()
    _require_enabled(policy, role)

    current = open_proposal(booking)
    if current is not None and _between_current_parties(booking, current):
        raise StateConflictError(
            "A fare proposal is already awaiting a response",
            code="proposal_pending",
            entryId=current.id,
        )

    reference = original_fare(booking)
    amount = require_within_band(amount, reference, policy.allowed_adjustment_percentage, "Proposed fare")

    blocks_start = booking.status == Booking.STATUS_ACCEPTED
    booking = _bump_version(booking, expected_version, awaiting_fare_agreement=blocks_start)

    entry = append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_PROPOSAL,
        offered_by=actor,
        offered_by_role=role,
        counterparty=counterparty,
        amount=amount,
        reference_fare=reference,
        expires_at=timezone.now() + proposal_ttl(),
    )
    logger.info("Fare proposal %s on booking %s: %s by %s %s", entry.sequence, booking.id, amount, role, actor.id)
    publish_entry(booking, entry, f"New fare proposed: {amount} {booking.currency}")
    return BookingResult(success=True, booking=booking, message="Proposal sent", extra={"entry": entry})


def _between_current_parties(booking: Booking, entry: FareNegotiationEntry) -> bool:
    if booking.status != Booking.STATUS_ACCEPTED:
        return True
    return entry_parties(entry) == {booking.requester_id, booking.driver_id}


def _open_entry_or_raise(booking: Booking, entry_id) -> FareNegotiationEntry:
    entry = open_proposal(booking)
    if entry is not None and str(entry.pk) == str(entry_id):
        return entry

    stale = booking.negotiation_entries.filter(pk=entry_id).first() if str(entry_id).isdigit() else None
    if stale is None:
        raise BookingNotFoundError("Proposal not found", code="proposal_not_found")
    if stale.kind in FareNegotiationEntry.OPENING_KINDS and is_expired(stale):
        raise StateConflictError("This proposal has expired", code="proposal_expired")
    raise StateConflictError("This proposal has already been answered", code="proposal_closed")


@transaction.atomic
def respond_to_proposal(actor, booking_id, entry_id, action: str, amount=None, expected_version=None) -> BookingResult:
    """
    Answer the open proposal.

    accept: the fare becomes the proposed amount. On a pending booking this
        assigns the driver party; on a booking blocked on fare agreement the
        ride starts.
    reject: the fare is unchanged and any start block is lifted.
    counter: a new proposal from the responder, within the same band.
    """
    if action not in RESPONSE_ACTIONS:
        raise BookingValidationError("Action must be accept, reject or counter", code="invalid_action")

    booking = load_booking(booking_id)
    require_status(booking, Booking.STATUS_PENDING, Booking.STATUS_ACCEPTED)
    entry = _open_entry_or_raise(booking, entry_id)
    if not _between_current_parties(booking, entry):
        raise StateConflictError(
            "This proposal was made with another driver and is closed", code="proposal_closed"
        )
    if actor.id != entry.counterparty_id:
        raise NotPermittedError("Only the other party can answer this proposal")

    role = "user" if actor.id == booking.requester_id else "driver"
    if expected_version is not None and int(expected_version) != booking.version:
        raise StateConflictError(
            "Booking was changed by someone else; refresh and try again", code="version_conflict"
        )

    if action == "counter":
        return _counter(booking, entry, actor, role, amount)
    if action == "reject":
        return _reject(booking, entry, actor, role)
    return _accept(booking, entry, actor, role)


def _counter(booking, entry, actor, role, amount) -> BookingResult:
    policy = get_fare_adjustment_policy()
    _require_enabled(policy, role)
    if amount is None:
        raise BookingValidationError("A counter needs an amount", code="invalid_amount")

    reference = original_fare(booking)
    amount = require_within_band(amount, reference, policy.allowed_adjustment_percentage, "Counter fare")
    booking = _bump_version(booking)

    counter = append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_COUNTER,
        offered_by=actor,
        offered_by_role=role,
        counterparty_id=entry.offered_by_id,
        amount=amount,
        reference_fare=reference,
        responds_to=entry,
        expires_at=timezone.now() + proposal_ttl(),
    )
    logger.info("Counter %s on booking %s: %s by %s %s", counter.sequence, booking.id, amount, role, actor.id)
    publish_entry(booking, counter, f"Counter offer: {amount} {booking.currency}")
    return BookingResult(success=True, booking=booking, message="Counter offer sent", extra={"entry": counter})


def _reject(booking, entry, actor, role) -> BookingResult:
    booking = _bump_version(booking, awaiting_fare_agreement=False)
    answer = append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_REJECT,
        offered_by=actor,
        offered_by_role=role,
        counterparty_id=entry.offered_by_id,
        amount=entry.amount,
        reference_fare=entry.reference_fare,
        status="rejected",
        responds_to=entry,
    )
    logger.info("Proposal %s on booking %s rejected", entry.sequence, booking.id)
    publish_entry(booking, answer, "Fare proposal declined; the fare is unchanged.")
    return BookingResult(success=True, booking=booking, message="Proposal rejected", extra={"entry": answer})


def _accept(booking, entry, actor, role) -> BookingResult:
    answer_fields = dict(
        kind=FareNegotiationEntry.KIND_ACCEPT,
        offered_by=actor,
        offered_by_role=role,
        counterparty_id=entry.offered_by_id,
        amount=entry.amount,
        reference_fare=entry.reference_fare,
        status="accepted",
        responds_to=entry,
    )

    if booking.status == Booking.STATUS_PENDING:
        driver = entry.offered_by if entry.offered_by_role == "driver" else actor
        require_driver_free(driver)
        booking = assign_driver(booking, driver, fare=entry.amount)
        booking.driver_offers.filter(status="pending", driver=driver).update(
            status="withdrawn", responded_at=timezone.now()
        )
        reject_competing_offers(booking, driver, reason="booking_accepted")
        answer = append_entry(booking, **answer_fields)
        publish_entry(booking, answer, f"Fare agreed at {entry.amount} {booking.currency}.")
        announce_acceptance(booking, driver)
        return BookingResult(success=True, booking=booking, message="Fare agreed", extra={"entry": answer})

    updates = {"fare": entry.amount, "awaiting_fare_agreement": False}
    auto_start = booking.awaiting_fare_agreement
    if auto_start:
        updates.update(status=Booking.STATUS_STARTED, started_at=timezone.now())
    booking = _bump_version(booking, statuses=(Booking.STATUS_ACCEPTED,), **updates)

    answer = append_entry(booking, **answer_fields)
    logger.info("Proposal %s on booking %s accepted at %s", entry.sequence, booking.id, entry.amount)
    publish_entry(booking, answer, f"Fare agreed at {entry.amount} {booking.currency}.")
    if auto_start:
        notify_status_change(booking, "ride_started", "Fare agreed. Your ride has started.")
    return BookingResult(
        success=True,
        booking=booking,
        message="Fare agreed",
        extra={"entry": answer, "started": auto_start},
    )


def negotiation_history(user, booking_id):
    booking = get_booking_for(user, booking_id)
    return booking, list(history(booking))
