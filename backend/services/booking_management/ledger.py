"""
Negotiation ledger access.

Entries are append-only. Whether a proposal is still open is derived from the
ledger itself: the latest bargaining entry is open when it is a proposal or a
counter that has not expired.
"""

import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from bookings.models import Booking, FareNegotiationEntry
from .exceptions import StateConflictError

logger = logging.getLogger(__name__)

BARGAINING_KINDS = (
    FareNegotiationEntry.KIND_PROPOSAL,
    FareNegotiationEntry.KIND_COUNTER,
    FareNegotiationEntry.KIND_ACCEPT,
    FareNegotiationEntry.KIND_REJECT,
)

APPEND_ATTEMPTS = 3


def next_sequence(booking: Booking) -> int:
    last = booking.negotiation_entries.aggregate(last=Max("sequence"))["last"] or 0
    return last + 1


def append_entry(booking: Booking, **fields) -> FareNegotiationEntry:
    """
    Add the next entry. A writer that loses the (booking, sequence) race
    re-reads the sequence and tries again inside its own savepoint.
    """
    for attempt in range(1, APPEND_ATTEMPTS + 1):
        sequence = next_sequence(booking)
        try:
            with transaction.atomic():
                return FareNegotiationEntry.objects.create(booking=booking, sequence=sequence, **fields)
        except IntegrityError:
            logger.info("Ledger sequence %s on booking %s taken (attempt %s)", sequence, booking.pk, attempt)
    raise StateConflictError(
        "The negotiation is busy; please try again", code="negotiation_busy"
    )


def latest_bargaining_entry(booking: Booking) -> Optional[FareNegotiationEntry]:
    return (
        booking.negotiation_entries
        .filter(kind__in=BARGAINING_KINDS)
        .order_by("-sequence")
        .first()
    )


def open_proposal(booking: Booking, now=None) -> Optional[FareNegotiationEntry]:
    entry = latest_bargaining_entry(booking)
    if entry is None or entry.kind not in FareNegotiationEntry.OPENING_KINDS:
        return None
    if is_expired(entry, now):
        return None
    return entry


def is_expired(entry: FareNegotiationEntry, now=None) -> bool:
    return entry.expires_at is not None and entry.expires_at <= (now or timezone.now())


def original_fare(booking: Booking):
    """The fare bargaining started from; bands are always measured against it."""
    first = (
        booking.negotiation_entries
        .filter(kind__in=FareNegotiationEntry.OPENING_KINDS)
        .order_by("sequence")
        .first()
    )
    return first.reference_fare if first else booking.fare


def history(booking: Booking):
    return booking.negotiation_entries.select_related("offered_by").order_by("sequence")


def entry_parties(entry: FareNegotiationEntry) -> set:
    return {entry.offered_by_id, entry.counterparty_id}


def close_stale_proposal(booking: Booking, winner_id: int) -> Optional[FareNegotiationEntry]:
    """
    Close the open proposal on a just-assigned booking when it was between the
    customer and some other driver. Returns the closing entry, if any.
    """
    entry = open_proposal(booking)
    if entry is None or winner_id in entry_parties(entry):
        return None
    return append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_REJECT,
        offered_by_id=booking.requester_id,
        offered_by_role="user",
        counterparty_id=entry.offered_by_id if entry.offered_by_id != booking.requester_id else entry.counterparty_id,
        amount=entry.amount,
        reference_fare=entry.reference_fare,
        status="rejected",
        responds_to=entry,
    )
