import logging

import redis
from celery import current_app
from django.conf import settings
from django.db import connection
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

REQUIRED_TASKS = (
    "bookings.tasks.expire_stale_fare_offers",
    "appointments.tasks.dispatch_due_reminders",
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Health check endpoint for monitoring system status"""

    health_status = {
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {}
    }

    def unhealthy(service, reason):
        logger.warning("Health check: %s unhealthy (%s)", service, reason)
        health_status["services"][service] = f"unhealthy: {reason}"
        health_status["status"] = "unhealthy"

    # Database check
    try:
        connection.ensure_connection()
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        unhealthy("database", e)

    # Redis check (channel layer, session registry and broker)
    try:
        redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3).ping()
        health_status["services"]["redis"] = "healthy"
    except Exception as e:
        unhealthy("redis", e)

    # Channel layer check
    if get_channel_layer() is not None:
        health_status["services"]["channels"] = "healthy"
    else:
        unhealthy("channels", "no channel layer")

    # Celery check: periodic sweeps registered
    missing = [name for name in REQUIRED_TASKS if name not in current_app.tasks]
    if missing:
        unhealthy("celery", "tasks not registered: " + ", ".join(missing))
    else:
        health_status["services"]["celery"] = "healthy"

    status_code = (
        status.HTTP_200_OK
        if health_status["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )

    return Response(health_status, status=status_code)
