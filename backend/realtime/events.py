"""
Outgoing WebSocket event schemas.

One serializer per event name. Payload field names are camelCase because the
mobile clients read them verbatim. Every publish goes through validate_event()
so a malformed payload fails on the server instead of on a phone.
"""

from rest_framework import serializers


class LocationSchema(serializers.Serializer):
    address = serializers.CharField(allow_blank=True)
    zone = serializers.CharField(allow_blank=True, required=False)
    coordinates = serializers.ListField(child=serializers.FloatField(), min_length=2, max_length=2)


class RequesterSchema(serializers.Serializer):
    id = serializers.IntegerField()
    username = serializers.CharField()
    firstName = serializers.CharField(allow_blank=True)
    lastName = serializers.CharField(allow_blank=True)
    email = serializers.CharField(allow_blank=True)
    phoneNumber = serializers.CharField(allow_blank=True)
    gender = serializers.CharField(allow_blank=True)
    kycLevel = serializers.IntegerField()
    kycStatus = serializers.CharField()
    role = serializers.CharField()
    rating = serializers.FloatField()


class BookingRefSchema(serializers.Serializer):
    requestId = serializers.IntegerField()
    message = serializers.CharField(required=False, allow_blank=True)


# ---------------------- Driver-facing ----------------------

class NewBookingRequestEvent(serializers.Serializer):
    requestId = serializers.IntegerField()
    fare = serializers.FloatField()
    offeredFare = serializers.FloatField()
    raisedFare = serializers.FloatField(allow_null=True)
    currency = serializers.CharField()
    distance = serializers.FloatField()
    distanceInMeters = serializers.IntegerField()
    driverDistance = serializers.FloatField(allow_null=True)
    user = RequesterSchema()
    serviceType = serializers.CharField()
    serviceCategory = serializers.CharField(allow_blank=True)
    vehicleType = serializers.CharField(allow_blank=True)
    routeType = serializers.CharField()
    driverPreference = serializers.CharField()
    pinkCaptainOptions = serializers.DictField(child=serializers.BooleanField())
    helperRequested = serializers.BooleanField()
    to = LocationSchema()
    matchingWindow = serializers.IntegerField()
    createdAt = serializers.DateTimeField()

    def get_fields(self):
        # "from" is a keyword and cannot be declared as a class attribute
        fields = super().get_fields()
        fields["from"] = LocationSchema()
        return fields


class FareIncreasedEvent(NewBookingRequestEvent):
    previousFare = serializers.FloatField()
    newFare = serializers.FloatField()


class BookingNoLongerAvailableEvent(BookingRefSchema):
    reason = serializers.CharField()


class FareOfferResultEvent(serializers.Serializer):
    bookingId = serializers.IntegerField()
    offerId = serializers.IntegerField()
    amount = serializers.FloatField()
    reason = serializers.CharField(required=False, allow_blank=True)
    message = serializers.CharField(allow_blank=True)


class RideStatusEvent(serializers.Serializer):
    bookingId = serializers.IntegerField()
    status = serializers.CharField()
    driverId = serializers.IntegerField(allow_null=True)
    fare = serializers.FloatField()
    timestamp = serializers.DateTimeField()
    message = serializers.CharField(allow_blank=True)


class RideCompletedEvent(RideStatusEvent):
    receiptNumber = serializers.CharField()
    totalFare = serializers.FloatField()
    currency = serializers.CharField()


class BookingCancelledEvent(BookingRefSchema):
    cancelledBy = serializers.ChoiceField(choices=["user", "driver"])
    reason = serializers.CharField(allow_blank=True)
    cancellationCharge = serializers.FloatField()


# ---------------------- Customer-facing ----------------------

class BookingRequestCreatedEvent(BookingRefSchema):
    driversFound = serializers.IntegerField()
    fare = serializers.FloatField()
    matchingWindow = serializers.IntegerField()


class NoDriversAvailableEvent(BookingRefSchema):
    resendAttempts = serializers.IntegerField()
    maxResendAttempts = serializers.IntegerField()
    canRaiseFare = serializers.BooleanField()
    maxAllowedFare = serializers.FloatField(allow_null=True)


class BookingAcceptedEvent(BookingRefSchema):
    driverId = serializers.IntegerField()
    driverName = serializers.CharField()
    fare = serializers.FloatField()
    acceptedAt = serializers.DateTimeField()


class BookingRejectedEvent(BookingRefSchema):
    driverId = serializers.IntegerField()
    reason = serializers.CharField(allow_blank=True)


class DriverOfferSchema(serializers.Serializer):
    offerId = serializers.IntegerField()
    driverId = serializers.IntegerField()
    driverName = serializers.CharField()
    driverRating = serializers.FloatField()
    vehicleInfo = serializers.DictField()
    proposedFare = serializers.FloatField()
    estimatedArrival = serializers.IntegerField(allow_null=True)
    expiresAt = serializers.DateTimeField()
    offeredAt = serializers.DateTimeField()


class DriverOffersUpdatedEvent(serializers.Serializer):
    bookingId = serializers.IntegerField()
    offers = DriverOfferSchema(many=True)
    totalOffers = serializers.IntegerField()
    originalFare = serializers.FloatField()
    message = serializers.CharField(allow_blank=True)


class BookingConfirmedEvent(serializers.Serializer):
    bookingId = serializers.IntegerField()
    driverId = serializers.IntegerField()
    driverName = serializers.CharField()
    fare = serializers.FloatField()
    message = serializers.CharField(allow_blank=True)


class FareRaisedEvent(BookingRefSchema):
    previousFare = serializers.FloatField()
    newFare = serializers.FloatField()
    resendAttempts = serializers.IntegerField()
    maxResendAttempts = serializers.IntegerField()
    driversFound = serializers.IntegerField()


# ---------------------- Both parties ----------------------

class FareNegotiationEvent(serializers.Serializer):
    bookingId = serializers.IntegerField()
    entryId = serializers.IntegerField()
    sequence = serializers.IntegerField()
    offeredBy = serializers.IntegerField()
    offeredByRole = serializers.ChoiceField(choices=["user", "driver"])
    amount = serializers.FloatField()
    originalFare = serializers.FloatField()
    currentFare = serializers.FloatField()
    status = serializers.CharField()
    expiresAt = serializers.DateTimeField(allow_null=True)
    message = serializers.CharField(allow_blank=True)


class SurveyRequestEvent(serializers.Serializer):
    appointmentId = serializers.IntegerField()
    confirmationId = serializers.IntegerField()
    surveyType = serializers.ChoiceField(choices=["customer", "provider"])
    deadline = serializers.DateTimeField()
    message = serializers.CharField(allow_blank=True)


class AppointmentDecisionEvent(serializers.Serializer):
    appointmentId = serializers.IntegerField()
    confirmationId = serializers.IntegerField()
    decision = serializers.CharField()
    feeCharged = serializers.FloatField()
    message = serializers.CharField(allow_blank=True)


EVENT_SCHEMAS = {
    "new_booking_request": NewBookingRequestEvent,
    "fare_increased": FareIncreasedEvent,
    "booking_no_longer_available": BookingNoLongerAvailableEvent,
    "fare_offer_accepted": FareOfferResultEvent,
    "fare_offer_rejected": FareOfferResultEvent,
    "booking_request_created": BookingRequestCreatedEvent,
    "no_drivers_available": NoDriversAvailableEvent,
    "booking_accepted": BookingAcceptedEvent,
    "booking_rejected": BookingRejectedEvent,
    "driver_offers_updated": DriverOffersUpdatedEvent,
    "booking_confirmed": BookingConfirmedEvent,
    "fare_raised": FareRaisedEvent,
    "fare_negotiation_proposed": FareNegotiationEvent,
    "fare_negotiation_countered": FareNegotiationEvent,
    "fare_negotiation_accepted": FareNegotiationEvent,
    "fare_negotiation_rejected": FareNegotiationEvent,
    "booking_cancelled": BookingCancelledEvent,
    "ride_started": RideStatusEvent,
    "ride_in_progress": RideStatusEvent,
    "ride_completed": RideCompletedEvent,
    "survey_request": SurveyRequestEvent,
    "appointment_confirmation_decided": AppointmentDecisionEvent,
}


class UnknownEventError(Exception):
    """Raised when publishing an event name with no registered schema."""
    pass


def validate_event(event: str, payload: dict) -> dict:
    """
    Validate and normalise an outgoing payload.

    Returns:
        JSON-safe dict (floats, ISO datetimes) ready for the channel layer

    Raises:
        UnknownEventError: no schema registered for the event name
        rest_framework.exceptions.ValidationError: payload does not match the schema
    """
    schema = EVENT_SCHEMAS.get(event)
    if schema is None:
        raise UnknownEventError(f"No schema registered for event '{event}'")
    serializer = schema(data=payload)
    serializer.is_valid(raise_exception=True)
    return _plain(serializer.data)


def _plain(value):
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
