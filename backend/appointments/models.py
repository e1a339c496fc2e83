from django.db import models
from django.conf import settings


class Appointment(models.Model):
    """Scheduled visit to a workshop-style provider (no live matching)"""

    STATUS_SCHEDULED = 'scheduled'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    CATEGORY_CHOICES = [
        ('workshop', 'Workshop'),
        ('tyre_shop', 'Tyre Shop'),
        ('key_unlocker', 'Key Unlocker'),
        ('other', 'Other'),
    ]

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='appointments'
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='provided_appointments'
    )
    service_category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='workshop')
    scheduled_at = models.DateTimeField()
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED)

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-scheduled_at']
        indexes = [
            models.Index(fields=['provider', 'status']),
            models.Index(fields=['customer', 'status']),
        ]

    def __str__(self):
        return f"Appointment {self.id} - {self.service_category} ({self.status})"


class AppointmentConfirmation(models.Model):
    """Two-sided survey that decides whether the appointment fee is charged"""

    STATUS_PENDING = 'pending'
    STATUS_SUCCESSFUL = 'successful'
    STATUS_UNSUCCESSFUL = 'unsuccessful'
    STATUS_DISPUTED = 'disputed'
    STATUS_EXPIRED = 'expired'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUCCESSFUL, 'Successful'),
        (STATUS_UNSUCCESSFUL, 'Unsuccessful'),
        (STATUS_DISPUTED, 'Disputed'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    CUSTOMER_ANSWERS = [
        ('good', 'Good'),
        ('bad', 'Bad'),
        ('didnt_visit', "Didn't Visit"),
    ]
    PROVIDER_ANSWERS = [
        ('good', 'Good'),
        ('bad', 'Bad'),
        ('didnt_meet_yet', "Didn't Meet Yet"),
    ]
    # answers meaning the visit took place
    VISITED_ANSWERS = ('good', 'bad')

    appointment = models.OneToOneField(
        Appointment,
        on_delete=models.CASCADE,
        related_name='confirmation'
    )

    customer_answer = models.CharField(max_length=20, choices=CUSTOMER_ANSWERS, blank=True)
    customer_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    customer_feedback = models.CharField(max_length=500, blank=True)
    customer_submitted_at = models.DateTimeField(null=True, blank=True)

    provider_answer = models.CharField(max_length=20, choices=PROVIDER_ANSWERS, blank=True)
    provider_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    provider_feedback = models.CharField(max_length=500, blank=True)
    provider_submitted_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    decision_reason = models.CharField(max_length=255, blank=True)
    fee_charged = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    deadline = models.DateTimeField()
    decided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'deadline']),
        ]

    def __str__(self):
        return f"Confirmation {self.id} for appointment {self.appointment_id} ({self.status})"

    @property
    def is_decided(self):
        return self.status != self.STATUS_PENDING


class ScheduledReminder(models.Model):
    """Persisted timer; the reminder sweep publishes it once due"""

    KIND_SURVEY_REQUEST = 'survey_request'
    KIND_FINALISE = 'finalise'

    KIND_CHOICES = [
        (KIND_SURVEY_REQUEST, 'Survey request'),
        (KIND_FINALISE, 'Finalise decision'),
    ]

    confirmation = models.ForeignKey(
        AppointmentConfirmation,
        on_delete=models.CASCADE,
        related_name='reminders'
    )
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    due_at = models.DateTimeField()
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['due_at', 'id']
        indexes = [
            models.Index(fields=['sent_at', 'due_at']),
        ]

    def __str__(self):
        return f"{self.kind} for confirmation {self.confirmation_id} due {self.due_at}"
