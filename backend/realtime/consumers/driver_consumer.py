"""Driver WebSocket consumer: live session, location and status frames."""

import logging
from typing import Dict, Any

from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async

from common.utils.geo import is_valid_coordinate
from drivers import services as driver_services
from drivers.models import DriverProfile
from realtime.notifications import room_for_driver
from realtime.sessions import get_session_registry
from .base import BaseConsumer

logger = logging.getLogger(__name__)

DRIVER_STATUSES = ("online", "busy", "offline")


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    An open socket is what makes a driver matchable: the session is registered
    on connect and removed on disconnect. Handles:
        - driver_location_update: latitude/longitude
        - driver_status_update: online/busy/offline
        - heartbeat: keeps the session alive in the shared registry
    """

    async def on_connect(self):
        if self.role != "driver":
            await self.send_error("This endpoint is for drivers only")
            await self.close(code=4403)
            return

        self.profile = await self._get_profile()
        if self.profile is None:
            await self.send_error("Driver profile not found")
            await self.close(code=4404)
            return

        await self._join_group(room_for_driver(self.user_id))
        await sync_to_async(get_session_registry().register)(self.user_id, self.channel_name)
        logger.info("Driver %s connected on %s", self.user_id, self.channel_name)

        await self.send_success(
            "connection_established",
            userId=self.user_id,
            role=self.role,
            status=self.profile.status,
            message="Driver connected successfully",
        )

    async def on_disconnect(self, close_code):
        if getattr(self, "profile", None) is None:
            return
        await sync_to_async(get_session_registry().deregister)(self.user_id, self.channel_name)
        logger.info("Driver %s disconnected (%s)", self.user_id, close_code)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "driver_location_update":
            await self._handle_location_update(data)
        elif msg_type == "driver_status_update":
            await self._handle_status_update(data)
        elif msg_type == "heartbeat":
            await sync_to_async(get_session_registry().refresh)(self.user_id)
            await self.send_success("heartbeat_ack")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        try:
            lat = float(data.get("latitude"))
            lon = float(data.get("longitude"))
        except (TypeError, ValueError):
            await self.send_error("driver_location_update requires latitude and longitude")
            return

        if not is_valid_coordinate(lat, lon):
            await self.send_error("Invalid coordinates")
            return

        await database_sync_to_async(driver_services.update_driver_location)(
            self.profile, round(lat, 6), round(lon, 6)
        )
        await self.send_success("location_updated", latitude=lat, longitude=lon)

    async def _handle_status_update(self, data: Dict[str, Any]):
        status = data.get("status")
        if status not in DRIVER_STATUSES:
            await self.send_error("Invalid status. Must be: online, busy, or offline")
            return

        await database_sync_to_async(driver_services.update_driver_status)(self.profile, status)
        await self.send_success("status_updated", status=status)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _get_profile(self):
        try:
            return DriverProfile.objects.get(user_id=self.user_id)
        except DriverProfile.DoesNotExist:
            return None
