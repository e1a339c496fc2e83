from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from services import booking_management as bookings
from .permissions import IsCustomer, IsDriver
from .serializers import (
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingRejectSerializer,
    BookingSerializer,
    DriverFareOfferSerializer,
    DriverOfferCreateSerializer,
    FareIncreaseSerializer,
    FareNegotiationEntrySerializer,
    FareProposalSerializer,
    OfferResponseSerializer,
    ProposalResponseSerializer,
    RaiseFareSerializer,
    ReceiptSerializer,
    RideCompleteSerializer,
)


def _result_response(result, status_code=status.HTTP_200_OK, **extra):
    """Render a BookingResult; a failed result still carries the booking."""
    body = {
        "success": result.success,
        "message": result.message,
        "booking": BookingSerializer(result.booking).data if result.booking else None,
    }
    if result.error_code:
        body["error"] = result.error_code
    body.update(extra)
    return Response(body, status=status_code)


# ==================== Customer Booking APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def create_booking(request):
    """Create a booking and notify matching drivers."""
    serializer = BookingCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.create_booking(request.user, **serializer.validated_data)
    return _result_response(
        result,
        status.HTTP_201_CREATED,
        drivers_found=result.extra.get("drivers_found", 0),
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCustomer])
def get_current_booking(request):
    """Customer's current active booking (polling fallback for the socket)."""
    booking = bookings.get_current_requester_booking(request.user)
    if not booking:
        return Response({'has_active_booking': False, 'message': 'No active booking found'})

    response_data = {
        'has_active_booking': True,
        'booking': BookingSerializer(booking).data,
        'status': booking.status,
        'driver_assigned': booking.driver_id is not None,
    }
    if booking.status == 'pending':
        response_data['message'] = 'Searching for nearby drivers...'
    elif booking.status == 'accepted':
        response_data['message'] = 'Driver is on the way!'
    else:
        response_data['message'] = 'Your ride is underway.'
    return Response(response_data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_detail(request, booking_id):
    booking = bookings.get_booking_for(request.user, booking_id)
    data = BookingSerializer(booking).data
    data['fare_increases'] = FareIncreaseSerializer(booking.fare_increases.all(), many=True).data
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_booking(request, booking_id):
    """Cancel by the customer or the assigned driver."""
    serializer = BookingCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.cancel_booking(request.user, booking_id, **serializer.validated_data)
    return _result_response(result, cancellation_charge=result.extra["cancellation_charge"])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def raise_fare(request, booking_id):
    """Raise the fare of a pending booking and resend it to drivers."""
    serializer = RaiseFareSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.raise_fare(
        request.user,
        booking_id,
        serializer.validated_data['new_fare'],
        reason=serializer.validated_data['reason'],
    )
    return _result_response(result, drivers_found=result.extra.get("drivers_found", 0))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_offers(request, booking_id):
    """Live driver offers on a booking; lapsed ones are expired on the way."""
    booking = bookings.get_booking_for(request.user, booking_id)
    offers = bookings.list_live_offers(booking)
    return Response({
        'booking_id': booking.id,
        'original_fare': booking.current_fare,
        'total_offers': len(offers),
        'offers': DriverFareOfferSerializer(offers, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def respond_to_offer(request, booking_id, offer_id):
    serializer = OfferResponseSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.respond_to_driver_offer(
        request.user, booking_id, offer_id, serializer.validated_data['action']
    )
    return _result_response(result)


# ==================== Fare Negotiation APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def negotiation_history(request, booking_id):
    booking, entries = bookings.negotiation_history(request.user, booking_id)
    return Response({
        'booking_id': booking.id,
        'version': booking.version,
        'fare': booking.fare,
        'awaiting_fare_agreement': booking.awaiting_fare_agreement,
        'entries': FareNegotiationEntrySerializer(entries, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def propose_fare(request, booking_id):
    serializer = FareProposalSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.propose_fare(request.user, booking_id, **serializer.validated_data)
    return _result_response(
        result,
        status.HTTP_201_CREATED,
        entry=FareNegotiationEntrySerializer(result.extra["entry"]).data,
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def respond_to_proposal(request, booking_id, entry_id):
    serializer = ProposalResponseSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.respond_to_proposal(request.user, booking_id, entry_id, **serializer.validated_data)
    return _result_response(result, entry=FareNegotiationEntrySerializer(result.extra["entry"]).data)


# ==================== Driver Booking Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def accept_booking(request, booking_id):
    """Accept a pending booking; exactly one driver can win it."""
    result = bookings.accept_booking(request.user, booking_id)
    return _result_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def reject_booking(request, booking_id):
    serializer = BookingRejectSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.reject_booking(request.user, booking_id, serializer.validated_data['reason'])
    return _result_response(result, already_rejected=result.extra["already_rejected"])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def submit_offer(request, booking_id):
    """Offer a different fare within the allowed band."""
    serializer = DriverOfferCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.submit_driver_offer(request.user, booking_id, **serializer.validated_data)
    return _result_response(
        result,
        status.HTTP_201_CREATED,
        offer=DriverFareOfferSerializer(result.extra["offer"]).data,
        total_offers=result.extra["total_offers"],
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def start_ride(request, booking_id):
    result = bookings.start_ride(request.user, booking_id)
    return _result_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def mark_in_progress(request, booking_id):
    result = bookings.mark_in_progress(request.user, booking_id)
    return _result_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_ride(request, booking_id):
    """Complete the ride and return its receipt."""
    serializer = RideCompleteSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = bookings.complete_ride(request.user, booking_id, **serializer.validated_data)
    return _result_response(result, receipt=ReceiptSerializer(result.extra["receipt"]).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_receipt(request, booking_id):
    booking = bookings.get_booking_for(request.user, booking_id)
    receipt = getattr(booking, 'receipt', None) if booking.status == 'completed' else None
    if receipt is None:
        return Response(
            {'error': 'receipt_not_found', 'message': 'No receipt for this booking yet'},
            status=status.HTTP_404_NOT_FOUND,
        )
    return Response(ReceiptSerializer(receipt).data)
