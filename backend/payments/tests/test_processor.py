import types

import pytest
import stripe

from core.exceptions import ConfigurationError, NotFound, Unauthorized, UpstreamError, ValidationError
from payments.models import Payment
from payments.services import processor


def test_stub_intent_has_predictable_shape(settings):
    settings.STRIPE_USE_STUB = True

    intent = processor.create_intent(amount_minor=12000, currency="eur", metadata={"booking_id": "b-1"})

    assert isinstance(intent, processor.PaymentIntentStub)
    assert intent.id.startswith("pi_test_")
    assert intent.client_secret == f"{intent.id}_secret_stub"
    assert intent.amount == 12000
    assert intent.status == "requires_payment_method"
    assert intent.metadata == {"booking_id": "b-1"}


def test_missing_secret_key_falls_back_to_stub(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = ""

    assert processor.should_use_stub()
    with pytest.raises(ConfigurationError):
        processor.configure_stripe()


def test_live_intent_creation_passes_amount_metadata_and_idempotency_key(monkeypatch, live_stripe):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return types.SimpleNamespace(id="pi_real_1", client_secret="pi_real_1_secret", status="requires_payment_method")

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(fake_create))

    intent = processor.create_intent(
        amount_minor=12000,
        currency="eur",
        metadata={"booking_id": "b-1"},
        idempotency_key="booking-b-1-attempt-1",
    )

    assert intent.id == "pi_real_1"
    assert stripe.api_key == "sk_test_123"
    assert stripe.max_network_retries == 0
    assert captured["amount"] == 12000
    assert captured["currency"] == "eur"
    assert captured["metadata"] == {"booking_id": "b-1"}
    assert captured["idempotency_key"] == "booking-b-1-attempt-1"


def test_processor_failure_becomes_upstream_error(monkeypatch, live_stripe):
    def fake_create(**kwargs):
        raise stripe.APIConnectionError("Network down")

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(fake_create))

    with pytest.raises(UpstreamError):
        processor.create_intent(amount_minor=100, currency="eur", metadata={})


def test_missing_live_intent_is_not_found(monkeypatch, live_stripe):
    def fake_retrieve(intent_id):
        raise stripe.InvalidRequestError("No such payment_intent", "intent", code="resource_missing")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(fake_retrieve))

    with pytest.raises(NotFound):
        processor.retrieve_intent("pi_gone")


def test_stub_cancel_is_a_no_op(monkeypatch, settings):
    settings.STRIPE_USE_STUB = True

    def fail_cancel(intent_id):
        raise AssertionError("stub mode must not call Stripe")

    monkeypatch.setattr(stripe.PaymentIntent, "cancel", staticmethod(fail_cancel))

    assert processor.cancel_intent("pi_test_abc") is None


def test_live_cancel_calls_stripe(monkeypatch, live_stripe):
    cancelled = []
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", staticmethod(lambda intent_id: cancelled.append(intent_id)))

    processor.cancel_intent("pi_real_1")

    assert cancelled == ["pi_real_1"]


def test_live_cancel_failure_becomes_upstream_error(monkeypatch, live_stripe):
    def fake_cancel(intent_id):
        raise stripe.InvalidRequestError("Intent already succeeded", "intent")

    monkeypatch.setattr(stripe.PaymentIntent, "cancel", staticmethod(fake_cancel))

    with pytest.raises(UpstreamError):
        processor.cancel_intent("pi_real_1")


@pytest.mark.django_db
def test_stub_retrieve_reads_back_local_payment(settings, booking):
    settings.STRIPE_USE_STUB = True
    Payment.objects.create(booking=booking, external_intent_id="pi_test_abc", amount=booking.total_price)

    intent = processor.retrieve_intent("pi_test_abc")

    assert intent.amount == 12000
    assert intent.status == "requires_payment_method"
    assert intent.metadata == {"booking_id": str(booking.pk)}
    with pytest.raises(NotFound):
        processor.retrieve_intent("pi_test_unknown")


def test_webhook_requires_secret_and_signature():
    with pytest.raises(ConfigurationError):
        processor.verify_and_parse_webhook(payload=b"{}", signature="t=1,v1=abc", secret="")
    with pytest.raises(Unauthorized):
        processor.verify_and_parse_webhook(payload=b"{}", signature=None, secret="whsec_test")
    with pytest.raises(Unauthorized):
        processor.verify_and_parse_webhook(payload=b"{}", signature="t=1,v1=abc", secret="whsec_test")


def test_webhook_rejects_signed_garbage(monkeypatch):
    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", staticmethod(lambda *args: True))

    with pytest.raises(ValidationError):
        processor.verify_and_parse_webhook(payload=b"not json", signature="t=1,v1=abc", secret="whsec_test")
    with pytest.raises(ValidationError):
        processor.verify_and_parse_webhook(payload=b"[1, 2]", signature="t=1,v1=abc", secret="whsec_test")
