import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Booking(models.Model):
    """Reservation of a space for a date (and optionally time) window."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    STATUSES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
    ]
    # Statuses that hold the slot; cancelled and completed bookings free it.
    BLOCKING_STATUSES = (PENDING, CONFIRMED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    space = models.ForeignKey("spaces.Space", on_delete=models.PROTECT, related_name="bookings")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    slot_start = models.DateTimeField(db_index=True)
    slot_end = models.DateTimeField(db_index=True)
    total_days = models.PositiveIntegerField(default=1)
    people_count = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    fees = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="eur")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING, db_index=True)
    notes = models.TextField(blank=True)
    special_requests = models.TextField(blank=True)
    cancellation_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["space", "status", "slot_start", "slot_end"], name="booking_space_window_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(slot_end__gt=models.F("slot_start")),
                name="booking_slot_end_after_start",
            ),
        ]

    def __str__(self):
        return f"{self.space} {self.start_date:%Y-%m-%d} ({self.status})"

    @property
    def is_pending(self) -> bool:
        return self.status == self.PENDING
