from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.permissions import IsCustomer, IsDriver
from . import services
from .models import Appointment, AppointmentConfirmation
from .serializers import AppointmentCreateSerializer, AppointmentSerializer, SurveySubmitSerializer


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def appointments(request):
    """List the caller's appointments (either side), or book one as a customer."""
    if request.method == 'GET':
        mine = Appointment.objects.filter(customer=request.user) | Appointment.objects.filter(provider=request.user)
        return Response({"appointments": AppointmentSerializer(mine.distinct(), many=True).data})

    if not IsCustomer().has_permission(request, None):
        return Response({"error": "Only customers can book appointments"}, status=status.HTTP_403_FORBIDDEN)

    serializer = AppointmentCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    appointment = services.create_appointment(request.user, **serializer.validated_data)
    return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def appointment_detail(request, appointment_id):
    appointment = services.get_appointment_for(request.user, appointment_id)
    return Response(AppointmentSerializer(appointment).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def start_appointment(request, appointment_id):
    appointment = services.start_appointment(request.user, appointment_id)
    return Response(AppointmentSerializer(appointment).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_appointment(request, appointment_id):
    """Complete the visit; both parties are then asked to confirm it."""
    confirmation = services.complete_appointment(request.user, appointment_id)
    return Response(AppointmentSerializer(confirmation.appointment).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_appointment(request, appointment_id):
    appointment = services.cancel_appointment(request.user, appointment_id)
    return Response(AppointmentSerializer(appointment).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def submit_survey(request, appointment_id):
    appointment = services.get_appointment_for(request.user, appointment_id)
    try:
        confirmation_id = appointment.confirmation.id
    except AppointmentConfirmation.DoesNotExist:
        return Response(
            {"error": "confirmation_not_found", "message": "Appointment has not been completed yet"},
            status=status.HTTP_404_NOT_FOUND,
        )

    serializer = SurveySubmitSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    services.submit_survey(confirmation_id, request.user, **serializer.validated_data)
    appointment = services.get_appointment_for(request.user, appointment_id)
    return Response(AppointmentSerializer(appointment).data)
