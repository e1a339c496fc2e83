"""Tells what to show in the Django admin interface for pricing app"""

from django.contrib import admin, messages
from .models import PricingConfiguration


@admin.register(PricingConfiguration)
class PricingConfigurationAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'is_active', 'updated_by', 'updated_at']
    list_filter = ['is_active']
    readonly_fields = ['is_active', 'created_at', 'updated_at']
    actions = ['make_active']

    def save_model(self, request, obj, form, change):
        obj.updated_by = request.user
        super().save_model(request, obj, form, change)

    @admin.action(description="Activate selected configuration")
    def make_active(self, request, queryset):
        if queryset.count() != 1:
            self.message_user(request, "Select exactly one configuration to activate.", messages.ERROR)
            return
        config = queryset.get()
        config.activate()
        self.message_user(request, f"{config.name} is now the active pricing configuration.")
