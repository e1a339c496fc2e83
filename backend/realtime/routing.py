"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.customer_consumer import CustomerConsumer
from .consumers.driver_consumer import DriverConsumer

websocket_urlpatterns = [
    # URL: ws://localhost:8000/ws/driver/?token=<access>
    re_path(
        r"ws/driver/$",
        DriverConsumer.as_asgi(),
        name="driver-ws"
    ),

    # URL: ws://localhost:8000/ws/customer/?token=<access>
    re_path(
        r"ws/customer/$",
        CustomerConsumer.as_asgi(),
        name="customer-ws"
    ),
]
