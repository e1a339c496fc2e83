from rest_framework import serializers
from .models import User


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "role",
            "gender",
            "phone_number",
            "completed_rides",
            "rating",
            "kyc_level",
            "kyc_status",
        ]
        read_only_fields = fields


class UserBasicSerializer(serializers.ModelSerializer):
    """Lite user info embedded in booking payloads."""
    name = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "name", "phone_number"]
