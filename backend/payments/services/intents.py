"""
Payment intent bridge: turn a pending booking into a processor intent the
client can complete.

Repeated requests for the same booking reuse the open intent instead of
creating a new charge, as long as the amount has not changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction

from bookings.models import Booking
from bookings.services.lifecycle import get_booking, lock_booking
from core.authorization import authorize
from core.exceptions import InvalidState, NotFound
from payments.models import Payment, PaymentEventLog
from payments.services import processor
from payments.services.reconciler import SUCCEEDED, PaymentEvent, reconcile
from spaces.pricing import to_minor_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntentDescriptor:
    intent_id: str
    client_secret: str
    amount: Decimal
    amount_minor: int
    currency: str
    status: str
    payment_id: str
    reused: bool = False


def _descriptor(payment: Payment, intent, *, reused: bool) -> IntentDescriptor:
    return IntentDescriptor(
        intent_id=payment.external_intent_id,
        client_secret=intent.client_secret,
        amount=payment.amount,
        amount_minor=to_minor_units(payment.amount),
        currency=payment.currency,
        status=getattr(intent, "status", "requires_payment_method"),
        payment_id=str(payment.pk),
        reused=reused,
    )


def _retire_payment(payment: Payment, reason: str, *, cancel: bool = True) -> None:
    """Mark a pending payment failed; ``cancel`` also closes its intent so it can no longer be charged."""
    if cancel:
        processor.cancel_intent(payment.external_intent_id)
    Payment.objects.filter(pk=payment.pk, status=Payment.PENDING).update(
        status=Payment.FAILED,
        failure_reason=reason,
    )
    logger.info("Payment %s retired: %s", payment.pk, reason)


def _reusable_intent(booking: Booking, amount: Decimal):
    """
    Find the pending payment whose intent can still be used for ``amount``.

    Returns ``(payment, intent)``; the intent may already be ``succeeded``,
    which the caller has to reconcile. Returns ``(None, None)`` when a fresh
    intent is needed. Stale pending payments are cancelled at the processor
    and marked failed on the way.
    """
    pending = booking.payments.filter(status=Payment.PENDING).order_by("-created_at")
    for payment in pending:
        try:
            intent = processor.retrieve_intent(payment.external_intent_id)
        except NotFound:
            _retire_payment(payment, "Payment intent no longer exists at the processor.", cancel=False)
            continue

        if intent.status == "succeeded":
            return payment, intent
        if payment.amount != amount or payment.currency != booking.currency:
            if intent.status == "processing":
                # Cannot be cancelled; its outcome arrives through reconciliation.
                raise InvalidState("A previous payment for this booking is still processing; try again shortly.")
            _retire_payment(payment, "Superseded: booking amount changed.", cancel=intent.status != "canceled")
            continue
        if intent.status in processor.PAYABLE_INTENT_STATUSES:
            return payment, intent
        _retire_payment(payment, f"Payment intent {intent.status}.", cancel=intent.status != "canceled")
    return None, None


def create_payment_intent(*, booking_id, actor) -> IntentDescriptor:
    booking = get_booking(booking_id)
    authorize(actor, "create_intent", booking)

    settled: Optional[Payment] = None
    with transaction.atomic():
        # Serializes intent creation per booking so double clicks share one intent.
        booking = lock_booking(booking.pk)
        if not booking.is_pending:
            raise InvalidState(f"Cannot pay for a {booking.status} booking.")

        amount = booking.total_price
        payment, intent = _reusable_intent(booking, amount)
        if payment is not None and intent.status != "succeeded":
            logger.info("Reusing payment intent %s for booking %s", payment.external_intent_id, booking.pk)
            return _descriptor(payment, intent, reused=True)
        if payment is not None:
            settled = payment
        else:
            attempt = booking.payments.count() + 1
            amount_minor = to_minor_units(amount)
            intent = processor.create_intent(
                amount_minor=amount_minor,
                currency=booking.currency,
                metadata={
                    "booking_id": str(booking.pk),
                    "user_id": str(booking.user_id),
                    "space_id": str(booking.space_id),
                },
                # The amount is part of the key: a repriced retry must never replay an older request.
                idempotency_key=f"booking-{booking.pk}-{amount_minor}{booking.currency}-attempt-{attempt}",
            )
            payment = Payment.objects.create(
                booking=booking,
                external_intent_id=intent.id,
                amount=amount,
                currency=booking.currency,
                status=Payment.PENDING,
            )
            logger.info(
                "Created payment intent %s for booking %s (%s %s)",
                intent.id,
                booking.pk,
                amount_minor,
                booking.currency,
            )
            return _descriptor(payment, intent, reused=False)

    # The charge already went through but we missed the event; apply it now.
    result = reconcile(
        PaymentEvent(
            intent_id=settled.external_intent_id,
            outcome=SUCCEEDED,
            source=PaymentEventLog.SOURCE_MANUAL,
            event_type="intent.already_succeeded",
        )
    )
    if result.anomaly:
        raise InvalidState("A previous payment for this booking is awaiting review.")
    raise InvalidState("This booking has already been paid.")
