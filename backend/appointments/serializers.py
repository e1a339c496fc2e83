from rest_framework import serializers

from accounts.models import User
from accounts.serializers import UserBasicSerializer
from .models import Appointment, AppointmentConfirmation


class AppointmentConfirmationSerializer(serializers.ModelSerializer):
    class Meta:
        model = AppointmentConfirmation
        fields = [
            'id', 'customer_answer', 'customer_rating', 'customer_feedback', 'customer_submitted_at',
            'provider_answer', 'provider_rating', 'provider_feedback', 'provider_submitted_at',
            'status', 'decision_reason', 'fee_charged', 'deadline', 'decided_at',
        ]
        read_only_fields = fields


class AppointmentSerializer(serializers.ModelSerializer):
    """Serializer for Appointments, with the confirmation once completed"""
    customer = UserBasicSerializer(read_only=True)
    provider = UserBasicSerializer(read_only=True)
    confirmation = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            'id', 'customer', 'provider', 'service_category', 'scheduled_at', 'notes',
            'status', 'created_at', 'started_at', 'completed_at', 'confirmation',
        ]
        read_only_fields = fields

    def get_confirmation(self, obj):
        try:
            return AppointmentConfirmationSerializer(obj.confirmation).data
        except AppointmentConfirmation.DoesNotExist:
            return None


class AppointmentCreateSerializer(serializers.Serializer):
    provider_id = serializers.PrimaryKeyRelatedField(queryset=User.objects.all(), source='provider')
    service_category = serializers.ChoiceField(choices=Appointment.CATEGORY_CHOICES)
    scheduled_at = serializers.DateTimeField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class SurveySubmitSerializer(serializers.Serializer):
    """Answer choices depend on the party; the service checks them."""
    answer = serializers.CharField()
    rating = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=5, default=None)
    feedback = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")
