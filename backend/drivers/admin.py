from django.contrib import admin
from drivers.models import DriverProfile, Vehicle


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for managing Driver Profiles"""

    list_display = [
        "user",
        "status",
        "pink_captain_mode",
        "current_latitude",
        "current_longitude",
        "last_location_update",
    ]

    list_filter = [
        "status",
        "pink_captain_mode",
        "last_location_update",
    ]

    search_fields = [
        "user__username",
        "user__phone_number",
    ]

    readonly_fields = [
        "last_location_update",
    ]

    ordering = ("user__username",)


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    """Vehicle registry; only approved, active vehicles count for matching"""

    list_display = ["plate_number", "driver", "service_type", "vehicle_type", "status", "is_active"]
    list_filter = ["status", "service_type", "is_active"]
    search_fields = ["plate_number", "driver__username"]
    actions = ["approve_vehicles"]

    @admin.action(description="Approve selected vehicles")
    def approve_vehicles(self, request, queryset):
        updated = queryset.update(status="approved")
        self.message_user(request, f"Approved {updated} vehicle(s).")
