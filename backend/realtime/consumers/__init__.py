"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .customer_consumer import CustomerConsumer
from .driver_consumer import DriverConsumer

__all__ = [
    "BaseConsumer",
    "CustomerConsumer",
    "DriverConsumer",
]
