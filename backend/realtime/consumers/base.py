"""Base WebSocket consumer shared by the driver and customer endpoints."""

import logging
from typing import Dict, Any, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from realtime.notifications import room_for_driver, room_for_user

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Every connection joins its personal user_<id> room. Server-side events
    arrive through marketplace_event and are forwarded as {"type": event, ...}.

    Subclasses override:
        - on_connect() / on_disconnect(close_code)
        - handle_message(msg_type, data): incoming frames not handled here
    """

    async def connect(self):
        self.user = self.scope.get("user")

        if self.user is None or self.user.is_anonymous:
            await self.close(code=4401)
            return

        self.user_id = getattr(self.user, "id", None)
        self.role = getattr(self.user, "role", None)

        # Track joined groups for cleanup
        self.joined_groups: Set[str] = set()

        await self.accept()
        await self._join_group(room_for_user(self.user_id))
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_success("connection_established", userId=self.user_id, role=self.role)

    async def disconnect(self, close_code):
        """Leave all joined groups on disconnect."""
        if not hasattr(self, "joined_groups"):
            return
        for group in list(self.joined_groups):
            await self._leave_group(group)
        await self.on_disconnect(close_code)

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming frames; room joins are handled here for both roles."""
        msg_type = data.get("type") if isinstance(data, dict) else None
        if not msg_type:
            await self.send_error("Message type is required")
            return

        if msg_type == "join_customer_room":
            await self._join_requested_room(data, "userId", room_for_user)
        elif msg_type == "join_driver_room":
            if self.role != "driver":
                await self.send_error("Only drivers can join a driver room")
                return
            await self._join_requested_room(data, "driverId", room_for_driver)
        elif msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.handle_message(msg_type, data)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error(f"Unknown message type: {msg_type}")

    async def _join_requested_room(self, data, id_key, room_for):
        # a client may only listen on its own rooms
        requested = data.get(id_key)
        try:
            requested = int(requested)
        except (TypeError, ValueError):
            await self.send_error(f"{id_key} is required")
            return
        if requested != self.user_id:
            logger.warning("User %s tried to join room of %s", self.user_id, requested)
            await self.send_error("You can only join your own room")
            return

        room = room_for(requested)
        await self._join_group(room)
        await self.send_success("room_joined", room=room)

    # ---------------------- Group Management Helpers ----------------------

    async def _join_group(self, group_name: str):
        """Join a channel group and track it."""
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        """Leave a channel group and untrack it."""
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str):
        await self.send_json({
            "type": "error",
            "message": message,
        })

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({
            "type": event_type,
            **kwargs,
        })

    # ---------------------- Server Events ----------------------

    async def marketplace_event(self, event):
        """group_send handler for every validated marketplace event."""
        await self.send_json({"type": event["event"], **event.get("payload", {})})
