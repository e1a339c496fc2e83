from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.utils.geo import calculate_distance
from services.booking_management import quote_fare
from .serializers import FareEstimateSerializer, PricingConfigurationSerializer
from .services import get_active_configuration


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def estimate_fare(request):
    """Itemized fare for a trip without creating a booking."""
    serializer = FareEstimateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    distance = calculate_distance(
        data['pickup_latitude'], data['pickup_longitude'],
        data['dropoff_latitude'], data['dropoff_longitude'],
    )
    breakdown = quote_fare(
        data['service_type'],
        data['vehicle_type'],
        data['service_category'],
        distance,
        route_type=data['route_type'],
        helper_requested=data['helper_requested'],
        service_details=data['service_details'],
        scheduled_for=data['scheduled_for'],
    )
    return Response({
        'distance_km': round(distance, 2),
        'fare': breakdown.as_dict(),
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def active_configuration(request):
    return Response(PricingConfigurationSerializer(get_active_configuration()).data)
