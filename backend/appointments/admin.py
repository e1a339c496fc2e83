"""Tells what to show in the Django admin interface for appointments app"""

from django.contrib import admin

from .models import Appointment, AppointmentConfirmation, ScheduledReminder


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer', 'provider', 'service_category', 'status', 'scheduled_at']
    list_filter = ['status', 'service_category']
    search_fields = ['customer__username', 'provider__username']


class ScheduledReminderInline(admin.TabularInline):
    model = ScheduledReminder
    extra = 0
    can_delete = False
    readonly_fields = ['kind', 'due_at', 'sent_at']


@admin.register(AppointmentConfirmation)
class AppointmentConfirmationAdmin(admin.ModelAdmin):
    """Survey answers and the automatic decision; disputed rows are listed for follow-up"""
    list_display = ['id', 'appointment', 'customer_answer', 'provider_answer', 'status', 'fee_charged', 'deadline']
    list_filter = ['status']
    readonly_fields = [f.name for f in AppointmentConfirmation._meta.fields]
    inlines = [ScheduledReminderInline]
