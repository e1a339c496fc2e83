from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin panel for customers and drivers, including KYC state"""

    list_display = [
        "username",
        "role",
        "gender",
        "kyc_level",
        "kyc_status",
        "is_active",
    ]

    list_filter = [
        "role",
        "gender",
        "kyc_status",
        "is_active",
    ]

    search_fields = [
        "username",
        "email",
        "phone_number",
    ]

    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        (
            "Marketplace",
            {
                "fields": (
                    "role",
                    "gender",
                    "phone_number",
                    "rating",
                    "completed_rides",
                    "kyc_level",
                    "kyc_status",
                )
            },
        ),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        (
            "Marketplace",
            {
                "fields": (
                    "role",
                    "gender",
                    "phone_number",
                )
            },
        ),
    )
