"""DRF exception handler that turns service-layer errors into stable API responses."""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def _status_for(exc):
    from pricing.exceptions import ConfigurationMissing
    from services.booking_management.exceptions import (
        BookingValidationError,
        BookingNotFoundError,
        NotPermittedError,
        StateConflictError,
    )

    if isinstance(exc, BookingValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, BookingNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NotPermittedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, StateConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ConfigurationMissing):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return None


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is not None:
        return response

    status_code = _status_for(exc)
    if status_code is None:
        return None

    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        logger.error("Operational error on %s: %s", context.get("view"), exc)

    body = {
        "error": getattr(exc, "code", "error"),
        "message": getattr(exc, "message", str(exc)),
    }
    body.update(getattr(exc, "extra", None) or {})
    return Response(body, status=status_code)
