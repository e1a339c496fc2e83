from django.db import models
from django.utils import timezone
from django.conf import settings

from common.taxonomy import ServiceType

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver availability, last known location and ride preferences"""
    STATUS_CHOICES = [
        ('online', 'Online'),
        ('busy', 'Busy'),
        ('offline', 'Offline'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Status & location
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='offline')
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    # Pink Captain opt-ins
    pink_captain_mode = models.BooleanField(default=False)
    accept_female_only = models.BooleanField(default=False)
    accept_family_rides = models.BooleanField(default=False)
    accept_safe_rides = models.BooleanField(default=False)
    accept_family_with_guardian_male = models.BooleanField(default=False)
    accept_male_without_female = models.BooleanField(default=False)
    accept_no_male_companion = models.BooleanField(default=False)

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user.username} - {self.status}"

    @property
    def has_location(self):
        return self.current_latitude is not None and self.current_longitude is not None


class Vehicle(models.Model):
    """Vehicle registry entry; a driver is only matched for services an active vehicle covers"""
    STATUS_CHOICES = [
        ('pending', 'Pending Review'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    driver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='vehicles')
    service_type = models.CharField(max_length=30, choices=ServiceType.choices)
    service_category = models.CharField(max_length=50, blank=True)
    vehicle_type = models.CharField(max_length=50)

    make = models.CharField(max_length=50, blank=True)
    model = models.CharField(max_length=50, blank=True)
    color = models.CharField(max_length=30, blank=True)
    plate_number = models.CharField(max_length=20, unique=True)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'vehicles'
        indexes = [
            models.Index(fields=['service_type', 'vehicle_type', 'is_active']),
        ]

    def __str__(self):
        return f"{self.plate_number} ({self.service_type} / {self.vehicle_type})"

    def summary(self):
        return {
            "vehicleId": self.id,
            "serviceType": self.service_type,
            "serviceCategory": self.service_category,
            "vehicleType": self.vehicle_type,
            "make": self.make,
            "model": self.model,
            "color": self.color,
            "plateNumber": self.plate_number,
        }
