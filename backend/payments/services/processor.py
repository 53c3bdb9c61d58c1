from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional
from uuid import uuid4

import stripe
from django.conf import settings

from core.exceptions import ConfigurationError, NotFound, Unauthorized, UpstreamError, ValidationError
from payments.models import Payment
from spaces.pricing import to_minor_units

logger = logging.getLogger(__name__)

# Intent statuses in which the client can still complete the charge.
PAYABLE_INTENT_STATUSES = frozenset(
    {"requires_payment_method", "requires_confirmation", "requires_action", "processing"}
)


@dataclass
class PaymentIntentStub:
    """
    Lightweight stand-in for stripe.PaymentIntent when running in stub mode.

    Tests and local development do not hit Stripe; instead we return predictable
    identifiers so the rest of the payment flow (Payment rows, reconciliation,
    booking confirmation) behaves as if Stripe responded.
    """

    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    metadata: dict[str, Any] = field(default_factory=dict)
    last_payment_error: Optional[dict[str, Any]] = None


def _stub_client_secret(intent_id: str) -> str:
    return f"{intent_id}_secret_stub"


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


@lru_cache(maxsize=4)
def _http_client(timeout: float):
    return stripe.RequestsClient(timeout=timeout)


def configure_stripe() -> None:
    api_key = _get_stripe_api_key()
    if not api_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key
    # Retries are user-initiated; a hung processor call must fail within the timeout.
    stripe.max_network_retries = 0
    stripe.default_http_client = _http_client(float(settings.STRIPE_TIMEOUT_SECONDS))


def _upstream_error(action: str, exc: Exception) -> UpstreamError:
    logger.exception("Stripe %s failed: %s", action, exc)
    message = getattr(exc, "user_message", None) or str(exc) or "Payment processor error."
    return UpstreamError(f"Payment processor error: {message}")


def create_intent(
    *,
    amount_minor: int,
    currency: str,
    metadata: dict[str, Any],
    idempotency_key: Optional[str] = None,
):
    """
    Create a processor payment intent (or stub equivalent).

    Returns an object exposing ``id``, ``client_secret``, ``amount``,
    ``currency`` and ``status``.
    """
    if should_use_stub():
        intent_id = f"pi_test_{uuid4().hex}"
        return PaymentIntentStub(
            id=intent_id,
            client_secret=_stub_client_secret(intent_id),
            amount=amount_minor,
            currency=currency,
            status="requires_payment_method",
            metadata=dict(metadata),
        )

    configure_stripe()
    try:
        return stripe.PaymentIntent.create(
            amount=amount_minor,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as exc:
        raise _upstream_error("intent creation", exc)


def retrieve_intent(intent_id: str):
    if should_use_stub():
        # Stub intents live only in our own Payment rows.
        payment = Payment.objects.filter(external_intent_id=intent_id).first()
        if payment is None:
            raise NotFound("Payment intent not found.")
        intent_status = {
            Payment.SUCCEEDED: "succeeded",
            Payment.FAILED: "requires_payment_method",
        }.get(payment.status, "requires_payment_method")
        return PaymentIntentStub(
            id=intent_id,
            client_secret=_stub_client_secret(intent_id),
            amount=to_minor_units(payment.amount),
            currency=payment.currency,
            status=intent_status,
            metadata={"booking_id": str(payment.booking_id)},
        )

    configure_stripe()
    try:
        return stripe.PaymentIntent.retrieve(intent_id)
    except stripe.InvalidRequestError as exc:
        if getattr(exc, "code", None) == "resource_missing":
            raise NotFound("Payment intent not found.")
        raise _upstream_error("intent retrieval", exc)
    except stripe.StripeError as exc:
        raise _upstream_error("intent retrieval", exc)


def cancel_intent(intent_id: str) -> None:
    """Cancel an open intent so the client can no longer complete it. Stub intents need nothing."""
    if should_use_stub():
        return

    configure_stripe()
    try:
        stripe.PaymentIntent.cancel(intent_id)
    except stripe.StripeError as exc:
        raise _upstream_error("intent cancellation", exc)
    logger.info("Cancelled payment intent %s", intent_id)


def verify_and_parse_webhook(*, payload: bytes, signature: Optional[str], secret: str) -> dict:
    """Verify the ``Stripe-Signature`` header against ``secret`` and return the event as a plain dict."""
    if not secret:
        logger.error("Stripe webhook secret not configured.")
        raise ConfigurationError("Webhook secret is not configured.")
    if not signature:
        logger.warning("Stripe webhook received without a signature.")
        raise Unauthorized("Missing webhook signature.")

    try:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        stripe.WebhookSignature.verify_header(body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
        event = json.loads(body)
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe signature.")
        raise Unauthorized("Invalid webhook signature.")
    except ValueError:
        logger.warning("Invalid payload received on Stripe webhook.")
        raise ValidationError("Invalid webhook payload.")

    if not isinstance(event, dict) or "type" not in event or not isinstance(event.get("data"), dict):
        logger.warning("Stripe webhook payload is not an event.")
        raise ValidationError("Invalid webhook payload.")
    return event
