from django.urls import path
from .views import (
    DriverProfileView,
    DriverVehiclesView,
    DriverStatusView,
    DriverLocationUpdateView,
    DriverRidePreferencesView,
    PendingBookingsForDriverView,
    DriverCurrentBookingView,
    DriverRideHistoryView,
)

app_name = "drivers"

urlpatterns = [
    path("profile/", DriverProfileView.as_view(), name="driver-profile"),
    path("vehicles/", DriverVehiclesView.as_view(), name="driver-vehicles"),
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("preferences/", DriverRidePreferencesView.as_view(), name="driver-preferences"),
    path("pending-bookings/", PendingBookingsForDriverView.as_view(), name="driver-pending-bookings"),
    path("current-booking/", DriverCurrentBookingView.as_view(), name="driver-current-booking"),
    path("history/", DriverRideHistoryView.as_view(), name="driver-history"),
]
