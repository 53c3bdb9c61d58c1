import uuid

from django.db import models


class Payment(models.Model):
    """One charge attempt for a booking; never deleted, it is the audit trail."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STATUSES = [
        (PENDING, "Pending"),
        (SUCCEEDED, "Succeeded"),
        (FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey("bookings.Booking", on_delete=models.PROTECT, related_name="payments")
    external_intent_id = models.CharField(max_length=255, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="eur")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING, db_index=True)
    payment_method = models.JSONField(default=dict, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.CharField(max_length=500, blank=True)
    needs_review = models.BooleanField(default=False)
    review_reason = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.external_intent_id} ({self.status})"


class PaymentEventLog(models.Model):
    """Record of every reconciliation attempt, applied or not."""

    SOURCE_WEBHOOK = "webhook"
    SOURCE_MANUAL = "manual"
    SOURCES = [
        (SOURCE_WEBHOOK, "Processor webhook"),
        (SOURCE_MANUAL, "Manual confirmation"),
    ]

    event_id = models.CharField(max_length=255, blank=True, db_index=True)
    source = models.CharField(max_length=10, choices=SOURCES)
    event_type = models.CharField(max_length=120, blank=True)
    intent_id = models.CharField(max_length=255, db_index=True)
    outcome = models.CharField(max_length=12)
    applied = models.BooleanField(default=False)
    note = models.CharField(max_length=500, blank=True)
    payment = models.ForeignKey(
        "Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-received_at", "-id"]

    def __str__(self):
        return f"{self.source}:{self.event_type or self.outcome} {self.intent_id}"
