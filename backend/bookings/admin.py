"""Tells what to show in the Django admin interface for bookings app"""

from django.contrib import admin
from .models import (
    Booking,
    DriverFareOffer,
    FareIncrease,
    FareNegotiationEntry,
    MatchingDispatch,
    Receipt,
    RejectedDriver,
)


class FareNegotiationEntryInline(admin.TabularInline):
    model = FareNegotiationEntry
    extra = 0
    can_delete = False
    readonly_fields = [f.name for f in FareNegotiationEntry._meta.fields]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Booking admin"""
    list_display = ['id', 'requester', 'driver', 'service_type', 'vehicle_type', 'status', 'fare', 'requested_at']
    list_filter = ['status', 'service_type', 'driver_preference', 'requested_at']
    search_fields = ['requester__username', 'driver__username', 'pickup_address', 'dropoff_address']
    readonly_fields = ['requested_at', 'accepted_at', 'started_at', 'in_progress_at',
                       'completed_at', 'cancelled_at', 'version', 'matching_window']
    date_hierarchy = 'requested_at'
    inlines = [FareNegotiationEntryInline]


@admin.register(DriverFareOffer)
class DriverFareOfferAdmin(admin.ModelAdmin):
    list_display = ("booking", "driver", "amount", "reference_fare", "status", "offered_at", "expires_at")
    list_filter = ("status",)
    search_fields = ("booking__id", "driver__username")


@admin.register(MatchingDispatch)
class MatchingDispatchAdmin(admin.ModelAdmin):
    list_display = ("booking", "driver", "window", "distance_km", "fare", "sent_at")
    search_fields = ("booking__id", "driver__username")


@admin.register(RejectedDriver)
class RejectedDriverAdmin(admin.ModelAdmin):
    list_display = ("booking", "driver", "reason", "rejected_at")
    search_fields = ("booking__id", "driver__username")


@admin.register(FareIncrease)
class FareIncreaseAdmin(admin.ModelAdmin):
    list_display = ("booking", "original_fare", "increased_fare", "resend_attempt", "increased_at")


@admin.register(Receipt)
class ReceiptAdmin(admin.ModelAdmin):
    list_display = ("receipt_number", "booking", "total_fare", "currency", "generated_at")
    search_fields = ("receipt_number", "booking__id")
    readonly_fields = ("generated_at",)
