import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


def default_currency():
    return settings.PAYMENTS_DEFAULT_CURRENCY.lower()


class Space(models.Model):
    """A bookable coworking space run by a manager."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    city = models.CharField(max_length=120, blank=True)
    address = models.CharField(max_length=255, blank=True)
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="managed_spaces",
    )
    capacity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    price_per_day = models.DecimalField(max_digits=10, decimal_places=2)
    price_per_hour = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default=default_currency)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name

    @property
    def uses_hourly_rate(self) -> bool:
        return self.price_per_hour is not None

    def clean(self):
        super().clean()
        if self.price_per_day is not None and self.price_per_day < 0:
            raise ValidationError({"price_per_day": "Daily price cannot be negative."})
        if self.price_per_hour is not None and self.price_per_hour < 0:
            raise ValidationError({"price_per_hour": "Hourly price cannot be negative."})
