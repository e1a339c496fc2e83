from django.db import models
from django.conf import settings

from common.taxonomy import DriverPreference, RouteType, ServiceType


class Booking(models.Model):
    """Aggregate root for matching, negotiation and the ride lifecycle"""

    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_STARTED = 'started'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_STARTED, 'Started'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_STARTED, STATUS_IN_PROGRESS)
    CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED)

    # Foreign keys
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bookings'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_bookings'
    )

    pinned_driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='pinned_bookings'
    )

    # Pickup / dropoff
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True)
    pickup_zone = models.CharField(max_length=100, blank=True)

    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True)
    dropoff_zone = models.CharField(max_length=100, blank=True)

    distance_km = models.DecimalField(max_digits=8, decimal_places=2)

    # Service
    service_type = models.CharField(max_length=30, choices=ServiceType.choices)
    service_category = models.CharField(max_length=50, blank=True)
    vehicle_type = models.CharField(max_length=50, blank=True)
    route_type = models.CharField(max_length=10, choices=RouteType.choices, default=RouteType.ONE_WAY)
    driver_preference = models.CharField(
        max_length=20, choices=DriverPreference.choices, default=DriverPreference.NEARBY
    )
    pink_captain_options = models.JSONField(default=dict, blank=True)
    search_radius_km = models.PositiveSmallIntegerField(null=True, blank=True)
    helper_requested = models.BooleanField(default=False)
    service_details = models.JSONField(default=dict, blank=True)
    scheduled_for = models.DateTimeField(null=True, blank=True)

    # Fare
    offered_fare = models.DecimalField(max_digits=10, decimal_places=2)
    raised_fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    fare = models.DecimalField(max_digits=10, decimal_places=2)
    fare_breakdown = models.JSONField(default=dict, blank=True)
    currency = models.CharField(max_length=3, default='AED')
    awaiting_fare_agreement = models.BooleanField(default=False)

    # Status
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    resend_attempts = models.PositiveSmallIntegerField(default=0)
    max_resend_attempts = models.PositiveSmallIntegerField(default=3)
    last_resend_at = models.DateTimeField(null=True, blank=True)
    matching_window = models.PositiveSmallIntegerField(default=0)

    # Optimistic concurrency token for negotiation writes
    version = models.PositiveIntegerField(default=0)

    # Cancellation
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    cancellation_reason = models.TextField(blank=True)
    cancellation_charge = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    in_progress_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['status', 'service_type']),
        ]

    def __str__(self):
        return f"Booking #{self.id} - {self.requester} - {self.status}"

    @property
    def current_fare(self):
        """The fare drivers are currently being offered."""
        return self.raised_fare if self.raised_fare is not None else self.offered_fare

    @property
    def pickup_point(self):
        return float(self.pickup_latitude), float(self.pickup_longitude)

    @property
    def dropoff_point(self):
        return float(self.dropoff_latitude), float(self.dropoff_longitude)

    def rejected_driver_ids(self):
        return set(self.rejections.values_list('driver_id', flat=True))


class RejectedDriver(models.Model):
    """Drivers who declined a booking; never re-offered the same booking."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='rejections')
    driver = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='+')
    reason = models.CharField(max_length=255, blank=True)
    rejected_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_rejections'
        ordering = ['rejected_at']
        constraints = [
            models.UniqueConstraint(fields=['booking', 'driver'], name='unique_booking_rejection')
        ]


class MatchingDispatch(models.Model):
    """Which driver was shown the booking in which matching window."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='dispatches')
    driver = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='+')
    window = models.PositiveSmallIntegerField()
    distance_km = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    fare = models.DecimalField(max_digits=10, decimal_places=2)
    sent_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_dispatches'
        ordering = ['window', 'distance_km']
        constraints = [
            models.UniqueConstraint(fields=['booking', 'driver', 'window'], name='unique_dispatch_per_window')
        ]


class DriverFareOffer(models.Model):
    """A driver's counter-price on a pending booking."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
        ('expired', 'Expired'),
        ('withdrawn', 'Withdrawn'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='driver_offers')
    driver = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='fare_offers')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reference_fare = models.DecimalField(max_digits=10, decimal_places=2)
    estimated_arrival_minutes = models.PositiveSmallIntegerField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    offered_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField()
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'driver_fare_offers'
        ordering = ['offered_at']
        constraints = [
            models.UniqueConstraint(
                fields=['booking', 'driver'],
                condition=models.Q(status='pending'),
                name='single_pending_offer_per_driver',
            )
        ]

    def __str__(self):
        return f"Offer {self.amount} on booking {self.booking_id} by driver {self.driver_id}"


class ImmutableLedgerError(Exception):
    """Raised on any attempt to rewrite or delete negotiation history."""
    pass


class FareNegotiationEntry(models.Model):
    """
    Append-only fare negotiation ledger. A proposal or counter is open until a
    later entry responds to it; entries themselves never change.
    """

    KIND_PROPOSAL = 'proposal'
    KIND_COUNTER = 'counter'
    KIND_ACCEPT = 'accept'
    KIND_REJECT = 'reject'
    KIND_DRIVER_OFFER = 'driver_offer'
    KIND_DRIVER_OFFER_ACCEPTED = 'driver_offer_accepted'
    KIND_DRIVER_OFFER_REJECTED = 'driver_offer_rejected'
    KIND_CHOICES = [
        (KIND_PROPOSAL, 'Proposal'),
        (KIND_COUNTER, 'Counter'),
        (KIND_ACCEPT, 'Accept'),
        (KIND_REJECT, 'Reject'),
        (KIND_DRIVER_OFFER, 'Driver Offer'),
        (KIND_DRIVER_OFFER_ACCEPTED, 'Driver Offer Accepted'),
        (KIND_DRIVER_OFFER_REJECTED, 'Driver Offer Rejected'),
    ]
    OPENING_KINDS = (KIND_PROPOSAL, KIND_COUNTER)

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
    ]

    ROLE_CHOICES = [
        ('user', 'Customer'),
        ('driver', 'Driver'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='negotiation_entries')
    sequence = models.PositiveIntegerField()
    kind = models.CharField(max_length=30, choices=KIND_CHOICES)
    offered_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='+')
    offered_by_role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    counterparty = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, null=True, blank=True, related_name='+'
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reference_fare = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    responds_to = models.ForeignKey(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='responses'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'fare_negotiation_entries'
        ordering = ['sequence']
        constraints = [
            models.UniqueConstraint(fields=['booking', 'sequence'], name='unique_ledger_sequence')
        ]

    def __str__(self):
        return f"#{self.sequence} {self.kind} {self.amount} on booking {self.booking_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableLedgerError("Negotiation entries cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableLedgerError("Negotiation entries cannot be deleted")


class FareIncrease(models.Model):
    """Customer-initiated fare raise after a matching window got no takers."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='fare_increases')
    original_fare = models.DecimalField(max_digits=10, decimal_places=2)
    increased_fare = models.DecimalField(max_digits=10, decimal_places=2)
    reason = models.CharField(max_length=255, default='No drivers responding')
    resend_attempt = models.PositiveSmallIntegerField()
    increased_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_fare_increases'
        ordering = ['resend_attempt']


class Receipt(models.Model):
    """Durable, itemized record generated when a ride completes."""

    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='receipt')
    receipt_number = models.CharField(max_length=40, unique=True)
    pickup_address = models.TextField(blank=True)
    dropoff_address = models.TextField(blank=True)
    distance_km = models.DecimalField(max_digits=8, decimal_places=2)
    ride_duration_minutes = models.PositiveIntegerField(default=0)
    waiting_minutes = models.PositiveIntegerField(default=0)
    fare_breakdown = models.JSONField(default=dict)
    agreed_fare = models.DecimalField(max_digits=10, decimal_places=2)
    total_fare = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='AED')
    generated_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_receipts'

    def __str__(self):
        return self.receipt_number
