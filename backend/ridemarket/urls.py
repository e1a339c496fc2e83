from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Customer booking, negotiation and driver booking actions
    path('api/bookings/', include('bookings.urls')),

    # Fare estimates and the active pricing document
    path('api/pricing/', include('pricing.urls')),

    # Driver APIs (profile, vehicles, status, location, preferences, pending bookings)
    path('api/driver/', include('drivers.urls')),

    # Appointment-based services and their confirmation surveys
    path('api/appointments/', include('appointments.urls')),
]
