"""
Notification helpers for sending WebSocket events to connected clients.

Rooms follow the client protocol: customers listen on user_<id>, drivers on
driver_<id>. Every payload is validated against its event schema before it
reaches the channel layer. Delivery is fire-and-forget: a failed group_send is
logged and never propagates into the booking operation that triggered it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Union

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from .events import validate_event

logger = logging.getLogger(__name__)

# Consumer handler that forwards every marketplace event to the socket
EVENT_HANDLER_TYPE = "marketplace.event"


def room_for_user(user_id: int) -> str:
    return f"user_{user_id}"


def room_for_driver(driver_id: int) -> str:
    return f"driver_{driver_id}"


def publish(room: str, event: str, payload: Dict[str, Any]) -> bool:
    """
    Validate and send one event to a room.

    Inside a transaction the send is held until commit and dropped on
    rollback, so clients only hear about saved state.

    Returns:
        True if handed to the channel layer (or queued for commit), False otherwise
    """
    data = validate_event(event, payload)
    if transaction.get_connection().in_atomic_block:
        transaction.on_commit(lambda: _send(room, event, data))
        return True
    return _send(room, event, data)


def _send(room: str, event: str, data: Dict[str, Any]) -> bool:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available; dropping %s for %s", event, room)
        return False

    logger.debug("WS -> %s: %s", room, event)
    try:
        async_to_sync(channel_layer.group_send)(
            room, {"type": EVENT_HANDLER_TYPE, "event": event, "payload": data}
        )
    except Exception:
        logger.exception("Failed to publish %s to %s", event, room)
        return False
    return True


def notify_user_event(user_id: int | None, event: str, payload: Dict[str, Any]) -> bool:
    """Send an event to a customer's personal room: user_<user_id>"""
    if not user_id:
        return False
    return publish(room_for_user(user_id), event, payload)


def notify_driver_event(driver_id: int | None, event: str, payload: Dict[str, Any]) -> bool:
    """Send an event to a driver's personal room: driver_<driver_id>"""
    if not driver_id:
        return False
    return publish(room_for_driver(driver_id), event, payload)


def broadcast_to_drivers(
    driver_ids: Iterable[int],
    event: str,
    payload: Union[Dict[str, Any], Callable[[int], Dict[str, Any]]],
) -> int:
    """
    Fan an event out to several drivers.

    Args:
        driver_ids: recipients
        event: event name
        payload: shared payload, or a callable building one per driver

    Returns:
        Number of drivers the event was handed off for
    """
    sent = 0
    for driver_id in driver_ids:
        body = payload(driver_id) if callable(payload) else payload
        if notify_driver_event(driver_id, event, body):
            sent += 1
    return sent
