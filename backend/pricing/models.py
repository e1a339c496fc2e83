from django.conf import settings
from django.db import models, transaction

from pricing.defaults import default_document


class PricingConfiguration(models.Model):
    """
    Admin-owned pricing document. Exactly one row is active per deployment;
    the engine reads it as an immutable snapshot.
    """

    name = models.CharField(max_length=100, default='default')
    document = models.JSONField(default=default_document)
    is_active = models.BooleanField(default=False)

    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'pricing_configurations'
        constraints = [
            models.UniqueConstraint(
                fields=['is_active'],
                condition=models.Q(is_active=True),
                name='single_active_pricing_configuration',
            )
        ]

    def __str__(self):
        return f"{self.name}{' (active)' if self.is_active else ''}"

    @transaction.atomic
    def activate(self):
        PricingConfiguration.objects.filter(is_active=True).exclude(pk=self.pk).update(is_active=False)
        self.is_active = True
        self.save(update_fields=['is_active', 'updated_at'])
