from decimal import Decimal

from rest_framework import serializers
from drivers.models import DriverProfile, Vehicle
from drivers.services import PREFERENCE_FIELDS
from accounts.serializers import UserSerializer
from common.taxonomy import ANY_VEHICLE, category_for_vehicle, validate_service_combination


class VehicleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vehicle
        fields = [
            "id",
            "service_type",
            "service_category",
            "vehicle_type",
            "make",
            "model",
            "color",
            "plate_number",
            "status",
            "is_active",
        ]
        read_only_fields = fields


class DriverProfileSerializer(serializers.ModelSerializer):
    """
    Full driver profile serializer
    """
    user = UserSerializer(read_only=True)
    vehicles = VehicleSerializer(source="user.vehicles", many=True, read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "user",
            "vehicles",
            "status",
            "current_latitude",
            "current_longitude",
            "last_location_update",
            *PREFERENCE_FIELDS,
        ]
        read_only_fields = ["id", "last_location_update"]


class DriverStatusSerializer(serializers.Serializer):
    """
    Serializer for updating driver availability.
    """
    status = serializers.ChoiceField(choices=["online", "offline"])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating driver GPS location.
    """
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-90"), max_value=Decimal("90"))
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=Decimal("-180"), max_value=Decimal("180"))


class RidePreferencesSerializer(serializers.Serializer):
    pink_captain_mode = serializers.BooleanField(required=False)
    accept_female_only = serializers.BooleanField(required=False)
    accept_family_rides = serializers.BooleanField(required=False)
    accept_safe_rides = serializers.BooleanField(required=False)
    accept_family_with_guardian_male = serializers.BooleanField(required=False)
    accept_male_without_female = serializers.BooleanField(required=False)
    accept_no_male_companion = serializers.BooleanField(required=False)


class VehicleRegistrationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vehicle
        fields = ["service_type", "service_category", "vehicle_type", "make", "model", "color", "plate_number"]

    def validate(self, attrs):
        problems = validate_service_combination(
            attrs["service_type"], attrs["vehicle_type"], attrs.get("service_category")
        )
        if attrs["vehicle_type"] == ANY_VEHICLE:
            problems.append("A registered vehicle needs a concrete vehicle type")
        if problems:
            raise serializers.ValidationError({"vehicle_type": problems})
        if not attrs.get("service_category"):
            attrs["service_category"] = category_for_vehicle(attrs["service_type"], attrs["vehicle_type"]) or ""
        return attrs


class PendingBookingsQuerySerializer(serializers.Serializer):
    radius_km = serializers.FloatField(required=False, min_value=1, max_value=50)
