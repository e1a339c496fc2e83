from decimal import Decimal

from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from common.taxonomy import DriverPreference, RouteType, ServiceType
from .models import Booking, DriverFareOffer, FareIncrease, FareNegotiationEntry, Receipt


class BookingSerializer(serializers.ModelSerializer):
    """Serializer for Bookings"""
    requester = UserBasicSerializer(read_only=True)
    driver = UserBasicSerializer(read_only=True)
    current_fare = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'requester', 'driver', 'pinned_driver',
            'pickup_latitude', 'pickup_longitude', 'pickup_address', 'pickup_zone',
            'dropoff_latitude', 'dropoff_longitude', 'dropoff_address', 'dropoff_zone',
            'distance_km', 'service_type', 'service_category', 'vehicle_type', 'route_type',
            'driver_preference', 'pink_captain_options', 'search_radius_km',
            'helper_requested', 'service_details', 'scheduled_for',
            'offered_fare', 'raised_fare', 'fare', 'current_fare', 'fare_breakdown', 'currency',
            'awaiting_fare_agreement', 'status', 'resend_attempts', 'max_resend_attempts',
            'matching_window', 'version', 'cancellation_reason', 'cancellation_charge',
            'requested_at', 'accepted_at', 'started_at', 'in_progress_at',
            'completed_at', 'cancelled_at',
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """Request shape for creating a booking. Taxonomy rules are checked by the service."""
    pickup_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-90"), max_value=Decimal("90"))
    pickup_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-180"), max_value=Decimal("180"))
    pickup_address = serializers.CharField(required=False, allow_blank=True, default="")
    pickup_zone = serializers.CharField(required=False, allow_blank=True, default="")
    dropoff_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-90"), max_value=Decimal("90"))
    dropoff_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-180"), max_value=Decimal("180"))
    dropoff_address = serializers.CharField(required=False, allow_blank=True, default="")
    dropoff_zone = serializers.CharField(required=False, allow_blank=True, default="")

    service_type = serializers.ChoiceField(choices=ServiceType.choices)
    vehicle_type = serializers.CharField(required=False, allow_blank=True, default="")
    service_category = serializers.CharField(required=False, allow_blank=True, default="")
    route_type = serializers.ChoiceField(choices=RouteType.choices, default=RouteType.ONE_WAY)
    driver_preference = serializers.ChoiceField(choices=DriverPreference.choices, default=DriverPreference.NEARBY)
    pink_captain_options = serializers.DictField(child=serializers.BooleanField(), required=False, default=dict)
    pinned_driver_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    search_radius_km = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=50, default=None)
    helper_requested = serializers.BooleanField(required=False, default=False)
    service_details = serializers.DictField(required=False, default=dict)
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True, default=None)
    offered_fare = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, default=None)


class BookingCancelSerializer(serializers.Serializer):
    """Serializer for booking cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    progress = serializers.FloatField(required=False, min_value=0, max_value=1, default=0)
    driver_arrived = serializers.BooleanField(required=False, default=False)


class BookingRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RideCompleteSerializer(serializers.Serializer):
    waiting_minutes = serializers.IntegerField(required=False, min_value=0, default=0)
    ride_duration_minutes = serializers.IntegerField(required=False, min_value=0, allow_null=True, default=None)


class DriverFareOfferSerializer(serializers.ModelSerializer):
    driver = UserBasicSerializer(read_only=True)

    class Meta:
        model = DriverFareOffer
        fields = [
            'id', 'booking', 'driver', 'amount', 'reference_fare', 'estimated_arrival_minutes',
            'status', 'offered_at', 'expires_at', 'responded_at',
        ]
        read_only_fields = fields


class DriverOfferCreateSerializer(serializers.Serializer):
    # Band checks happen in the service so the error can carry min/max
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    estimated_arrival_minutes = serializers.IntegerField(required=False, min_value=0, allow_null=True, default=None)


class OfferResponseSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["accept", "reject"])


class FareProposalSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class ProposalResponseSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["accept", "reject", "counter"])
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, default=None)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        if attrs["action"] == "counter" and attrs.get("amount") is None:
            raise serializers.ValidationError({"amount": "A counter offer needs an amount."})
        return attrs


class RaiseFareSerializer(serializers.Serializer):
    new_fare = serializers.DecimalField(max_digits=10, decimal_places=2)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class FareNegotiationEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = FareNegotiationEntry
        fields = [
            'id', 'sequence', 'kind', 'offered_by', 'offered_by_role', 'counterparty',
            'amount', 'reference_fare', 'status', 'responds_to', 'created_at', 'expires_at',
        ]
        read_only_fields = fields


class FareIncreaseSerializer(serializers.ModelSerializer):
    class Meta:
        model = FareIncrease
        fields = ['id', 'original_fare', 'increased_fare', 'reason', 'resend_attempt', 'increased_at']
        read_only_fields = fields


class ReceiptSerializer(serializers.ModelSerializer):
    class Meta:
        model = Receipt
        fields = [
            'receipt_number', 'booking', 'pickup_address', 'dropoff_address', 'distance_km',
            'ride_duration_minutes', 'waiting_minutes', 'fare_breakdown', 'agreed_fare',
            'total_fare', 'currency', 'generated_at',
        ]
        read_only_fields = fields
