from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from bookings.models import Booking
from bookings.serializers import BookingSerializer
from drivers.models import DriverProfile
from drivers.serializers import (
    DriverProfileSerializer,
    DriverStatusSerializer,
    LocationUpdateSerializer,
    PendingBookingsQuerySerializer,
    RidePreferencesSerializer,
    VehicleRegistrationSerializer,
    VehicleSerializer,
)
from services import booking_management as bookings

from drivers import services

# Utility: Ensure request.user is a driver
def require_driver(user):
    if user.role != "driver":
        return False, Response({"error": "Only drivers allowed"}, status=403)
    try:
        profile = user.driver_profile
        return True, profile
    except DriverProfile.DoesNotExist:
        return False, Response({"error": "Driver profile not found"}, status=404)


class DriverProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile  # Response object

        serializer = DriverProfileSerializer(profile, context={"request": request})
        return Response(serializer.data)


class DriverVehiclesView(APIView):
    """Vehicle registry. New vehicles wait for admin approval before they count for matching."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        vehicles = request.user.vehicles.order_by("id")
        return Response({"vehicles": VehicleSerializer(vehicles, many=True).data})

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = VehicleRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vehicle = serializer.save(driver=request.user)
        return Response(VehicleSerializer(vehicle).data, status=201)


#    HTTP twin of the driver_status_update socket frame.
class DriverStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({"status": profile.status})

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        if profile.status == "busy" and bookings.get_current_driver_booking(request.user):
            return Response({"error": "Finish your current ride first", "status": profile.status}, status=409)

        services.update_driver_status(profile, new_status)

        return Response({
            "message": f"Status updated to {new_status}",
            "status": new_status
        })


#    HTTP twin of the driver_location_update socket frame.
class DriverLocationUpdateView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({
            "latitude": float(profile.current_latitude) if profile.has_location else None,
            "longitude": float(profile.current_longitude) if profile.has_location else None,
            "last_updated": profile.last_location_update,
            "status": profile.status,
        })

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]

        services.update_driver_location(profile, lat, lon)

        return Response({
            "message": "Location updated",
            "latitude": float(lat),
            "longitude": float(lon),
            "status": profile.status
        })


class DriverRidePreferencesView(APIView):
    """Pink Captain mode and its sub-option opt-ins."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({name: getattr(profile, name) for name in services.PREFERENCE_FIELDS})

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = RidePreferencesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if serializer.validated_data.get("pink_captain_mode") and request.user.gender != "female":
            return Response({"error": "Pink Captain mode is only available to female drivers"}, status=400)

        services.update_ride_preferences(profile, **serializer.validated_data)
        return Response({name: getattr(profile, name) for name in services.PREFERENCE_FIELDS})


#    HTTP fallback for drivers who missed the new_booking_request push.
class PendingBookingsForDriverView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        if profile.status != "online":
            return Response({
                "bookings": [],
                "count": 0,
                "message": "Go online to see booking requests."
            })

        query = PendingBookingsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        visible = bookings.pending_bookings_for_driver(request.user, query.validated_data.get("radius_km"))
        results = []
        for booking, distance in visible:
            data = BookingSerializer(booking, context={"request": request}).data
            data["driver_distance_km"] = distance
            results.append(data)

        return Response({"bookings": results, "count": len(results)})


class DriverCurrentBookingView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        booking = bookings.get_current_driver_booking(request.user)
        if not booking:
            return Response({"message": "No active ride"}, status=404)

        serializer = BookingSerializer(booking, context={"request": request})
        return Response(serializer.data)


class DriverRideHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        completed = Booking.objects.filter(driver=request.user, status=Booking.STATUS_COMPLETED)
        serializer = BookingSerializer(completed, many=True, context={"request": request})

        return Response({"count": completed.count(), "bookings": serializer.data})
