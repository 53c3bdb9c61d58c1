"""
Merge asynchronous payment outcomes into local Payment and Booking state.

Webhooks and the test-mode confirm endpoint both normalize their input into a
:class:`PaymentEvent` and go through :func:`reconcile`, so they share the same
guarantees: a payment never leaves ``succeeded``, and a replayed success does
not confirm the booking a second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.services.lifecycle import confirm_booking, lock_booking
from core.authorization import authorize
from core.exceptions import Forbidden, InvalidState, NotFound, ValidationError
from payments.models import Payment, PaymentEventLog
from payments.services.processor import retrieve_intent, should_use_stub
from spaces.pricing import from_minor_units

logger = logging.getLogger(__name__)

SUCCEEDED = Payment.SUCCEEDED
FAILED = Payment.FAILED
OUTCOMES = (SUCCEEDED, FAILED)

WEBHOOK_OUTCOMES = {
    "payment_intent.succeeded": SUCCEEDED,
    "payment_intent.payment_failed": FAILED,
    "payment_intent.canceled": FAILED,
}

STUB_PAYMENT_METHOD = {"type": "card", "card": {"brand": "visa", "last4": "4242"}}


@dataclass(frozen=True)
class PaymentEvent:
    intent_id: str
    outcome: str
    source: str = PaymentEventLog.SOURCE_WEBHOOK
    event_id: str = ""
    event_type: str = ""
    failure_reason: str = ""
    payment_method: Optional[dict[str, Any]] = None
    booking_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None


@dataclass
class ReconcileResult:
    payment: Optional[Payment]
    applied: bool
    booking_confirmed: bool = False
    anomaly: str = ""
    note: str = ""


def _payment_method_descriptor(value) -> Optional[dict[str, Any]]:
    if not value:
        return None
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        return {"id": value}
    return {"id": getattr(value, "id", str(value))}


def _error_message(error) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("message")
    return getattr(error, "message", None)


def event_from_webhook(event) -> Optional[PaymentEvent]:
    """Normalize a verified processor event; returns None for event types we do not act on."""
    event_type = event["type"]
    outcome = WEBHOOK_OUTCOMES.get(event_type)
    if outcome is None:
        return None

    intent = event["data"].get("object") or {}
    if not intent.get("id"):
        raise ValidationError("Webhook event carries no payment intent.")
    metadata = intent.get("metadata") or {}
    failure_reason = ""
    if outcome == FAILED:
        failure_reason = (
            _error_message(intent.get("last_payment_error"))
            or intent.get("cancellation_reason")
            or ("Payment intent canceled." if event_type == "payment_intent.canceled" else "Payment failed.")
        )

    return PaymentEvent(
        intent_id=intent["id"],
        outcome=outcome,
        source=PaymentEventLog.SOURCE_WEBHOOK,
        event_id=event.get("id") or "",
        event_type=event_type,
        failure_reason=failure_reason,
        payment_method=_payment_method_descriptor(intent.get("payment_method")),
        booking_id=metadata.get("booking_id"),
        amount_minor=intent.get("amount"),
        currency=intent.get("currency"),
    )


def _find_or_recover_payment(event: PaymentEvent) -> Optional[Payment]:
    payment = Payment.objects.filter(external_intent_id=event.intent_id).first()
    if payment is not None or not event.booking_id:
        return payment

    try:
        booking = Booking.objects.filter(pk=event.booking_id).first()
    except (DjangoValidationError, ValueError):
        booking = None
    if booking is None:
        return None

    amount = from_minor_units(event.amount_minor) if event.amount_minor is not None else booking.total_price
    payment, created = Payment.objects.get_or_create(
        external_intent_id=event.intent_id,
        defaults={
            "booking": booking,
            "amount": amount,
            "currency": event.currency or booking.currency,
            "status": Payment.PENDING,
        },
    )
    if created:
        logger.warning(
            "Recovered missing payment record for intent %s (booking %s)",
            event.intent_id,
            booking.pk,
        )
    return payment


def _settlement_anomaly(payment: Payment, booking: Booking) -> str:
    """Reason a succeeded payment must not confirm ``booking``, or an empty string when it may."""
    if payment.amount != booking.total_price or payment.currency != booking.currency:
        return (
            f"Payment of {payment.amount} {payment.currency} does not match the booking total "
            f"of {booking.total_price} {booking.currency}."
        )
    other = booking.payments.filter(status=SUCCEEDED, needs_review=False).exclude(pk=payment.pk).first()
    if other is not None:
        return f"Booking was already paid by payment {other.pk}."
    return ""


def _flag_for_review(payment: Payment, anomaly: str, now) -> ReconcileResult:
    logger.warning("Reconciliation anomaly for payment %s: %s", payment.pk, anomaly)
    Payment.objects.filter(pk=payment.pk).update(
        needs_review=True,
        review_reason=anomaly[:500],
        updated_at=now,
    )
    payment.refresh_from_db()
    return ReconcileResult(payment=payment, applied=True, anomaly=anomaly, note=anomaly[:500])


def _apply_success(payment: Payment, event: PaymentEvent) -> ReconcileResult:
    now = timezone.now()
    updates = {"status": SUCCEEDED, "completed_at": now, "failure_reason": "", "updated_at": now}
    if event.payment_method:
        updates["payment_method"] = event.payment_method

    with transaction.atomic():
        # Same lock order as every booking writer: space, booking, then payment.
        booking = lock_booking(payment.booking_id)
        payment = Payment.objects.select_for_update().get(pk=payment.pk)

        updated = Payment.objects.filter(pk=payment.pk).exclude(status=SUCCEEDED).update(**updates)
        if not updated:
            payment.refresh_from_db()
            logger.info("Payment %s already succeeded; replayed event ignored", payment.pk)
            return ReconcileResult(payment=payment, applied=False, note="Payment already succeeded.")

        logger.info("Payment %s succeeded for booking %s", payment.pk, payment.booking_id)
        # The charge stands in every anomaly; a human decides between confirming and a refund.
        anomaly = _settlement_anomaly(payment, booking)
        if not anomaly:
            try:
                booking = confirm_booking(booking_id=booking.pk, actor=None)
            except (InvalidState, NotFound) as exc:
                anomaly = f"Payment succeeded but the booking could not be confirmed: {exc.detail}"
        if anomaly:
            return _flag_for_review(payment, anomaly, now)

    payment.refresh_from_db()
    return ReconcileResult(
        payment=payment,
        applied=True,
        booking_confirmed=booking.status == Booking.CONFIRMED,
        note="Payment succeeded; booking confirmed.",
    )


def _apply_failure(payment: Payment, event: PaymentEvent) -> ReconcileResult:
    now = timezone.now()
    reason = (event.failure_reason or "Payment failed.")[:500]
    updates = {"status": FAILED, "failure_reason": reason, "updated_at": now}
    if event.payment_method:
        updates["payment_method"] = event.payment_method

    updated = Payment.objects.filter(pk=payment.pk).exclude(status=SUCCEEDED).update(**updates)
    payment.refresh_from_db()
    if not updated:
        logger.warning("Ignoring failure event for payment %s which already succeeded", payment.pk)
        return ReconcileResult(payment=payment, applied=False, note="Payment already succeeded.")

    logger.info("Payment %s failed for booking %s: %s", payment.pk, payment.booking_id, reason)
    return ReconcileResult(payment=payment, applied=True, note=reason)


def _record(event: PaymentEvent, result: ReconcileResult) -> None:
    PaymentEventLog.objects.create(
        event_id=event.event_id,
        source=event.source,
        event_type=event.event_type,
        intent_id=event.intent_id,
        outcome=event.outcome,
        applied=result.applied,
        note=result.note[:500],
        payment=result.payment,
    )


def reconcile(event: PaymentEvent) -> ReconcileResult:
    if event.outcome not in OUTCOMES:
        raise ValidationError(f"Unknown payment outcome '{event.outcome}'.", field="outcome")

    payment = _find_or_recover_payment(event)
    if payment is None:
        logger.warning("Ignoring %s event for unknown intent %s", event.outcome, event.intent_id)
        result = ReconcileResult(payment=None, applied=False, note="No payment recorded for this intent.")
    elif event.outcome == SUCCEEDED:
        result = _apply_success(payment, event)
    else:
        result = _apply_failure(payment, event)

    _record(event, result)
    return result


def confirm_payment_manually(
    *,
    intent_id: str,
    actor,
    outcome: Optional[str] = None,
    payment_method: Optional[dict[str, Any]] = None,
) -> ReconcileResult:
    """
    Test-mode confirmation used when no webhook can reach the server.

    In stub mode the submitted outcome is trusted. Against a live processor the
    outcome is read back from the intent so a client cannot mark its own
    payment as paid.
    """
    if not getattr(settings, "PAYMENTS_ALLOW_MANUAL_CONFIRM", False):
        raise Forbidden("Manual payment confirmation is disabled.")

    payment = Payment.objects.select_related("booking__space").filter(external_intent_id=intent_id).first()
    if payment is None:
        raise NotFound("Payment not found.")
    authorize(actor, "confirm_payment", payment.booking)

    failure_reason = ""
    if should_use_stub():
        resolved = outcome or SUCCEEDED
        if resolved == SUCCEEDED:
            payment_method = payment_method or STUB_PAYMENT_METHOD
        else:
            failure_reason = "Payment declined."
    else:
        intent = retrieve_intent(intent_id)
        error = getattr(intent, "last_payment_error", None)
        if intent.status == "succeeded":
            resolved = SUCCEEDED
        elif intent.status == "canceled" or error:
            resolved = FAILED
            failure_reason = _error_message(error) or "Payment intent canceled."
        else:
            raise InvalidState(f"Payment is still {intent.status}; try again once it completes.")
        payment_method = _payment_method_descriptor(getattr(intent, "payment_method", None))

    event = PaymentEvent(
        intent_id=intent_id,
        outcome=resolved,
        source=PaymentEventLog.SOURCE_MANUAL,
        event_type="manual.confirm",
        failure_reason=failure_reason,
        payment_method=payment_method,
    )
    return reconcile(event)
