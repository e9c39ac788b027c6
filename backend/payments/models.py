from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class PaymentQuerySet(models.QuerySet):
    def orphaned(self):
        """Successful payments that have not been linked to their bookings yet."""
        return self.filter(status=Payment.SUCCESS, linked_at__isnull=True)



class Payment(models.Model):
    CREATED = "created"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    STATUSES = [
        (CREATED, "Created"),
        (PENDING, "Pending"),
        (SUCCESS, "Success"),
        (FAILED, "Failed"),
    ]
    TERMINAL_STATUSES = frozenset({SUCCESS, FAILED})

    reference = models.CharField(max_length=64, unique=True)
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    currency = models.CharField(max_length=10, default="inr")
    status = models.CharField(max_length=10, choices=STATUSES, default=CREATED)
    intent_metadata = models.JSONField()
    payer_details = models.JSONField(default=dict, blank=True)
    payment_url = models.URLField(max_length=500, blank=True)
    gateway_intent_id = models.CharField(max_length=255, blank=True)
    linked_booking_ids = models.JSONField(default=list, blank=True)
    linked_at = models.DateTimeField(null=True, blank=True)
    gateway_status_code = models.CharField(max_length=64, blank=True)
    gateway_response = models.JSONField(null=True, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    retry_attempts = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    last_error_code = models.CharField(max_length=40, blank=True)
    last_error_message = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(linked_at__isnull=True) | models.Q(status="success"),
                name="ck_payment_linked_only_when_success",
            ),
        ]

    def __str__(self):
        return f"{self.reference} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_linked(self) -> bool:
        return self.linked_at is not None
