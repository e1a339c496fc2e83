"""
Driver matching.

This module handles:
    - Opening a matching window: directory query plus fan-out to candidates
    - Recording which drivers saw which window
    - Withdrawing a booking from drivers once it is taken or cancelled
"""

from .matching_window import (
    MatchingWindow,
    build_candidate_query,
    dispatched_driver_ids,
    open_matching_window,
    withdraw_booking,
)
from .payloads import booking_request_payload

__all__ = [
    "MatchingWindow",
    "build_candidate_query",
    "dispatched_driver_ids",
    "open_matching_window",
    "withdraw_booking",
    "booking_request_payload",
]
