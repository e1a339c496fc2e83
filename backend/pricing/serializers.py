from rest_framework import serializers

from common.taxonomy import RouteType, ServiceType, validate_service_combination
from common.utils.geo import is_valid_coordinate
from .models import PricingConfiguration


class FareEstimateSerializer(serializers.Serializer):
    """Trip description for a fare quote; nothing is booked."""
    pickup_latitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    dropoff_latitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    service_type = serializers.ChoiceField(choices=ServiceType.choices)
    vehicle_type = serializers.CharField(required=False, allow_blank=True, default="")
    service_category = serializers.CharField(required=False, allow_blank=True, default="")
    route_type = serializers.ChoiceField(choices=RouteType.choices, default=RouteType.ONE_WAY)
    helper_requested = serializers.BooleanField(default=False)
    service_details = serializers.DictField(required=False, default=dict)
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        for label in ("pickup", "dropoff"):
            if not is_valid_coordinate(attrs[f"{label}_latitude"], attrs[f"{label}_longitude"]):
                raise serializers.ValidationError({label: "Invalid coordinates"})

        problems = validate_service_combination(
            attrs["service_type"], attrs["vehicle_type"], attrs["service_category"]
        )
        if problems:
            raise serializers.ValidationError({"vehicle_type": problems})
        return attrs


class PricingConfigurationSerializer(serializers.ModelSerializer):
    class Meta:
        model = PricingConfiguration
        fields = ['id', 'name', 'document', 'is_active', 'updated_at']
        read_only_fields = fields
