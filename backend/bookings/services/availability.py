from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import QuerySet

from bookings.models import Booking
from core.exceptions import NotFound, ValidationError
from spaces.models import Space


@dataclass(frozen=True)
class BookingWindow:
    """
    A requested reservation window plus its composed half-open instant range.

    Timed windows run from ``start_date start_time`` to ``end_date end_time``.
    Untimed windows block whole days: ``start_date 00:00`` up to midnight after
    ``end_date``.
    """

    start_date: date
    end_date: date
    start_time: Optional[time]
    end_time: Optional[time]
    slot_start: datetime
    slot_end: datetime

    @property
    def is_timed(self) -> bool:
        return self.start_time is not None

    def overlaps(self, other: "BookingWindow") -> bool:
        return self.slot_start < other.slot_end and self.slot_end > other.slot_start


def _coerce_date(value, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD).", field=field)


def _coerce_time(value, field: str) -> Optional[time]:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    try:
        return time.fromisoformat(str(value)).replace(tzinfo=None)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a time of day (HH:MM).", field=field)


def _instant(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=dt_timezone.utc)


def build_window(start_date, end_date, start_time=None, end_time=None) -> BookingWindow:
    start_date = _coerce_date(start_date, "start_date")
    end_date = _coerce_date(end_date, "end_date")
    start_time = _coerce_time(start_time, "start_time")
    end_time = _coerce_time(end_time, "end_time")

    if end_date < start_date:
        raise ValidationError("End date must be on or after the start date.", field="end_date")
    if (start_time is None) != (end_time is None):
        raise ValidationError("Provide both start_time and end_time, or neither.", field="end_time")

    if start_time is not None:
        # Times are a daily opening: they bound every booked day, not just the first and last.
        if end_time <= start_time:
            raise ValidationError("End time must be after the start time.", field="end_time")
        slot_start = _instant(start_date, start_time)
        slot_end = _instant(end_date, end_time)
    else:
        slot_start = _instant(start_date, time.min)
        slot_end = _instant(end_date + timedelta(days=1), time.min)

    return BookingWindow(
        start_date=start_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
        slot_start=slot_start,
        slot_end=slot_end,
    )


def get_active_space(space_id, *, lock: bool = False) -> Space:
    """Fetch a bookable space; ``lock`` takes a row lock for the surrounding transaction."""
    queryset = Space.objects.filter(is_active=True)
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=space_id)
    except (Space.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Space not found.")


def find_conflicts(space: Space, window: BookingWindow, *, exclude_booking_id=None) -> QuerySet:
    conflicts = Booking.objects.filter(
        space=space,
        status__in=Booking.BLOCKING_STATUSES,
        slot_start__lt=window.slot_end,
        slot_end__gt=window.slot_start,
    )
    if exclude_booking_id is not None:
        conflicts = conflicts.exclude(pk=exclude_booking_id)
    return conflicts.order_by("slot_start")


def is_available(
    space_id,
    start_date,
    end_date,
    start_time=None,
    end_time=None,
    *,
    exclude_booking_id=None,
) -> bool:
    """Return True when no pending or confirmed booking of the space overlaps the window."""
    space = get_active_space(space_id)
    window = build_window(start_date, end_date, start_time, end_time)
    return not find_conflicts(space, window, exclude_booking_id=exclude_booking_id).exists()
