import uuid

from django.conf import settings
from django.db import models


def _new_slot_id() -> str:
    return str(uuid.uuid4())


class Slot(models.Model):
    """Recurring weekly time slot that customers book per calendar date."""

    id = models.CharField(primary_key=True, max_length=64, default=_new_slot_id, editable=False)
    day_of_week = models.CharField(max_length=12)
    start_time = models.TimeField()
    end_time = models.TimeField()
    is_holiday = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["day_of_week", "start_time"]

    def __str__(self):
        return f"{self.day_of_week} {self.start_time:%H:%M}-{self.end_time:%H:%M}"


class BookingQuerySet(models.QuerySet):
    def active(self):
        return self.exclude(status=Booking.CANCELLED)


class Booking(models.Model):
    """One customer's claim on a slot for a single date."""

    BOOKED = "booked"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    STATUSES = [
        (BOOKED, "Booked"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
        (RESCHEDULED, "Rescheduled"),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="bookings")
    slot = models.ForeignKey("Slot", on_delete=models.PROTECT, related_name="bookings")
    booking_date = models.DateField()
    start_time = models.TimeField()
    end_time = models.TimeField()
    status = models.CharField(max_length=12, choices=STATUSES, default=BOOKED)
    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="bookings",
    )
    payment_reference = models.CharField(max_length=64, blank=True, db_index=True)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ["booking_date", "start_time", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["slot", "booking_date"],
                condition=~models.Q(status="cancelled"),
                name="uq_booking_active_slot_date",
            ),
        ]

    def __str__(self):
        return f"{self.booking_date} {self.slot} ({self.status})"
