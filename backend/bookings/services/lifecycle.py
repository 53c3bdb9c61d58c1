from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.availability import build_window, find_conflicts, get_active_space
from core.authorization import OWNER, authorize, capabilities_for
from core.exceptions import Conflict, InvalidState, NotFound, ValidationError
from spaces.models import Space
from spaces.pricing import quote_price

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "The space is not available for the selected period."
WINDOW_FIELDS = ("start_date", "end_date", "start_time", "end_time")
EDITABLE_FIELDS = ("people_count", "notes", "special_requests") + WINDOW_FIELDS


def _fee_percent() -> Decimal:
    return Decimal(str(getattr(settings, "BOOKING_SERVICE_FEE_PERCENT", 0) or 0))


def _check_capacity(space: Space, people_count) -> None:
    if people_count is None or people_count < 1:
        raise ValidationError("People count must be at least 1.", field="people_count")
    if people_count > space.capacity:
        raise ValidationError(
            f"People count ({people_count}) exceeds the space capacity ({space.capacity}).",
            field="people_count",
        )


def _lock_space_row(space_id) -> None:
    # Serializes writers touching the same space; a no-op on SQLite, which locks the whole database.
    list(Space.objects.select_for_update().filter(pk=space_id).values_list("pk", flat=True))


def get_booking(booking_id, *, lock: bool = False) -> Booking:
    queryset = Booking.objects.select_related("space", "user")
    if lock:
        queryset = queryset.select_for_update(of=("self",))
    try:
        return queryset.get(pk=booking_id)
    except (Booking.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Booking not found.")


def lock_booking(booking_id) -> Booking:
    """
    Lock a booking for the surrounding transaction and return it fresh.

    Every writer locks the space row before the booking row, so callers that
    hold both never wait on each other in opposite orders.
    """
    try:
        space_id = Booking.objects.filter(pk=booking_id).values_list("space_id", flat=True).first()
    except (DjangoValidationError, ValueError):
        space_id = None
    if space_id is None:
        raise NotFound("Booking not found.")
    _lock_space_row(space_id)
    return get_booking(booking_id, lock=True)


def create_booking(
    *,
    user,
    space_id,
    start_date,
    end_date,
    start_time=None,
    end_time=None,
    people_count: int,
    notes: str = "",
    special_requests: str = "",
) -> Booking:
    """
    Create a pending booking after checking availability against durable state.

    The space row stays locked from the availability check until the insert
    commits, so two concurrent requests for overlapping windows cannot both pass
    the check.
    """
    window = build_window(start_date, end_date, start_time, end_time)

    with transaction.atomic():
        space = get_active_space(space_id, lock=True)
        _check_capacity(space, people_count)

        if find_conflicts(space, window).exists():
            logger.info(
                "Booking rejected for space %s: %s - %s overlaps an existing booking",
                space.pk,
                window.slot_start,
                window.slot_end,
            )
            raise Conflict(UNAVAILABLE_MESSAGE)

        quote = quote_price(
            space,
            window.start_date,
            window.end_date,
            window.start_time,
            window.end_time,
            fee_percent=_fee_percent(),
        )
        booking = Booking.objects.create(
            space=space,
            user=user,
            start_date=window.start_date,
            end_date=window.end_date,
            start_time=window.start_time,
            end_time=window.end_time,
            slot_start=window.slot_start,
            slot_end=window.slot_end,
            total_days=quote.total_days,
            people_count=people_count,
            base_price=quote.base_price,
            fees=quote.fees,
            total_price=quote.total_price,
            currency=quote.currency,
            status=Booking.PENDING,
            notes=notes or "",
            special_requests=special_requests or "",
        )

    logger.info(
        "Booking %s created for space %s by user %s (%s %s)",
        booking.pk,
        space.pk,
        user.pk,
        booking.total_price,
        booking.currency,
    )
    return booking


def update_booking(*, booking_id, actor, changes: dict) -> Booking:
    """
    Apply owner edits to a pending booking.

    Changing the window re-runs the availability check (ignoring the booking
    itself) and reprices the booking; other edits keep the stored price.
    """
    booking = get_booking(booking_id)
    authorize(actor, "update", booking)

    changes = {field: value for field, value in changes.items() if field in EDITABLE_FIELDS}
    if not changes:
        raise ValidationError("No valid fields to update.")

    with transaction.atomic():
        booking = lock_booking(booking.pk)
        if not booking.is_pending:
            raise InvalidState("Only pending bookings can be modified.")

        update_fields = []
        space = booking.space

        if "people_count" in changes:
            _check_capacity(space, changes["people_count"])
            booking.people_count = changes["people_count"]
            update_fields.append("people_count")

        for field in ("notes", "special_requests"):
            if field in changes:
                setattr(booking, field, changes[field] or "")
                update_fields.append(field)

        if any(field in changes for field in WINDOW_FIELDS):
            window = build_window(
                changes.get("start_date", booking.start_date),
                changes.get("end_date", booking.end_date),
                changes.get("start_time", booking.start_time),
                changes.get("end_time", booking.end_time),
            )
            if (window.slot_start, window.slot_end) != (booking.slot_start, booking.slot_end):
                if find_conflicts(space, window, exclude_booking_id=booking.pk).exists():
                    raise Conflict(UNAVAILABLE_MESSAGE)
                quote = quote_price(
                    space,
                    window.start_date,
                    window.end_date,
                    window.start_time,
                    window.end_time,
                    fee_percent=_fee_percent(),
                )
                booking.start_date = window.start_date
                booking.end_date = window.end_date
                booking.start_time = window.start_time
                booking.end_time = window.end_time
                booking.slot_start = window.slot_start
                booking.slot_end = window.slot_end
                booking.total_days = quote.total_days
                booking.base_price = quote.base_price
                booking.fees = quote.fees
                booking.total_price = quote.total_price
                update_fields += [
                    "start_date",
                    "end_date",
                    "start_time",
                    "end_time",
                    "slot_start",
                    "slot_end",
                    "total_days",
                    "base_price",
                    "fees",
                    "total_price",
                ]

        if update_fields:
            booking.save(update_fields=update_fields + ["updated_at"])

    logger.info("Booking %s updated by user %s: %s", booking.pk, actor.pk, sorted(set(update_fields)))
    return booking


def confirm_booking(*, booking_id, actor=None) -> Booking:
    """
    Move a pending booking to confirmed.

    ``actor=None`` is the platform itself (payment success). Confirming a
    booking that is already confirmed returns it untouched.
    """
    booking = get_booking(booking_id)
    authorize(actor, "confirm", booking)

    now = timezone.now()
    with transaction.atomic():
        _lock_space_row(booking.space_id)
        updated = Booking.objects.filter(pk=booking.pk, status=Booking.PENDING).update(
            status=Booking.CONFIRMED,
            confirmed_at=now,
            updated_at=now,
        )
    booking.refresh_from_db()

    if updated:
        logger.info("Booking %s confirmed by %s", booking.pk, actor.pk if actor else "system")
        return booking
    if booking.status == Booking.CONFIRMED:
        logger.info("Booking %s already confirmed; nothing to do", booking.pk)
        return booking
    raise InvalidState(f"Cannot confirm a {booking.status} booking.")


def _enforce_client_cutoff(actor, booking: Booking) -> None:
    cutoff_hours = getattr(settings, "BOOKING_CLIENT_CANCEL_CUTOFF_HOURS", 0) or 0
    if not cutoff_hours or capabilities_for(actor, booking) != {OWNER}:
        return
    if booking.slot_start - timezone.now() < timedelta(hours=cutoff_hours):
        raise InvalidState(
            f"Bookings can only be cancelled at least {cutoff_hours} hours before they start."
        )


def cancel_booking(*, booking_id, actor, reason: str = "") -> Booking:
    """Cancel a pending or confirmed booking; the slot is free as soon as this commits."""
    booking = get_booking(booking_id)
    authorize(actor, "cancel", booking)
    _enforce_client_cutoff(actor, booking)

    now = timezone.now()
    updated = Booking.objects.filter(pk=booking.pk, status__in=Booking.BLOCKING_STATUSES).update(
        status=Booking.CANCELLED,
        cancellation_reason=reason or "",
        cancelled_at=now,
        updated_at=now,
    )
    booking.refresh_from_db()
    if not updated:
        raise InvalidState(f"A {booking.status} booking cannot be cancelled.")

    logger.info("Booking %s cancelled by user %s: %s", booking.pk, actor.pk, reason or "no reason given")
    return booking


def complete_booking(*, booking_id, actor=None) -> Booking:
    booking = get_booking(booking_id)
    authorize(actor, "complete", booking)

    now = timezone.now()
    updated = Booking.objects.filter(pk=booking.pk, status=Booking.CONFIRMED).update(
        status=Booking.COMPLETED,
        completed_at=now,
        updated_at=now,
    )
    booking.refresh_from_db()
    if not updated:
        raise InvalidState(f"Only confirmed bookings can be completed; this one is {booking.status}.")

    logger.info("Booking %s completed", booking.pk)
    return booking


def complete_elapsed_bookings(*, now=None) -> int:
    """Complete every confirmed booking whose window has ended. Returns the number completed."""
    now = now or timezone.now()
    completed = Booking.objects.filter(status=Booking.CONFIRMED, slot_end__lte=now).update(
        status=Booking.COMPLETED,
        completed_at=now,
        updated_at=now,
    )
    if completed:
        logger.info("Completed %s elapsed bookings", completed)
    return completed
