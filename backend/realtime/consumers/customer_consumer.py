"""Customer WebSocket consumer: booking notifications on the user_<id> room."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from services import booking_management as bookings
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class CustomerConsumer(BaseConsumer):
    """
    WebSocket consumer for customers.

    Booking events arrive on the personal room joined by BaseConsumer.
    Handles:
        - current_booking: snapshot of the active booking, for reconnects
    """

    async def on_connect(self):
        if self.role != "user":
            await self.send_error("This endpoint is for customers only")
            await self.close(code=4403)
            return

        await self.send_success(
            "connection_established",
            userId=self.user_id,
            role=self.role,
            message="Customer connected successfully",
        )

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "current_booking":
            await self.send_success("current_booking", booking=await self._current_booking())
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    @database_sync_to_async
    def _current_booking(self):
        booking = bookings.get_current_requester_booking(self.user)
        if booking is None:
            return None
        return {
            "bookingId": booking.id,
            "status": booking.status,
            "fare": float(booking.current_fare),
            "driverId": booking.driver_id,
            "awaitingFareAgreement": booking.awaiting_fare_agreement,
        }
