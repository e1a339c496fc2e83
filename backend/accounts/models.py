from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role, gender and KYC state"""
    ROLE_CHOICES = [
        ('user', 'Customer'),
        ('driver', 'Driver'),
    ]

    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]

    KYC_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    # Level 2 with status approved is a fully verified driver
    KYC_FULLY_APPROVED_LEVEL = 2

    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='user')
    phone_number = models.CharField(max_length=20, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    completed_rides = models.IntegerField(default=0)
    rating = models.DecimalField(max_digits=3, decimal_places=2, default=5)

    # KYC
    kyc_level = models.PositiveSmallIntegerField(default=0)
    kyc_status = models.CharField(max_length=10, choices=KYC_STATUS_CHOICES, default='pending')

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_driver(self):
        return self.role == 'driver'

    @property
    def display_name(self):
        return self.get_full_name() or self.username
