import hashlib
import hmac
import json
import time

import pytest

from bookings.models import Booking
from payments.models import Payment, PaymentEventLog

WEBHOOK_URL = "/api/payments/webhook/"


def _sign(payload: str, secret: str = "whsec_test") -> str:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _intent_event(intent_id, event_type="payment_intent.succeeded", event_id="evt_1", **intent):
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": intent_id, "object": "payment_intent", **intent}},
        }
    )


def _post_webhook(api_client, payload, signature=None):
    return api_client.post(
        WEBHOOK_URL,
        data=payload,
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature if signature is not None else _sign(payload),
    )


@pytest.fixture
def intent_id(api_client, client_user, booking):
    api_client.force_authenticate(client_user)
    response = api_client.post("/api/payments/create-intent/", {"booking_id": str(booking.pk)}, format="json")
    assert response.status_code == 201
    api_client.force_authenticate(None)
    return response.json()["intent_id"]


@pytest.mark.django_db
def test_create_intent_returns_client_secret(api_client, client_user, booking):
    api_client.force_authenticate(client_user)

    first = api_client.post("/api/payments/create-intent/", {"booking_id": str(booking.pk)}, format="json")
    second = api_client.post("/api/payments/create-intent/", {"booking_id": str(booking.pk)}, format="json")

    assert first.status_code == 201
    body = first.json()
    assert body["success"] is True
    assert body["client_secret"].endswith("_secret_stub")
    assert body["amount_minor"] == 12000
    assert second.status_code == 200
    assert second.json()["intent_id"] == body["intent_id"]
    assert second.json()["reused"] is True


@pytest.mark.django_db
def test_create_intent_for_someone_elses_booking_is_forbidden(api_client, other_client, booking):
    api_client.force_authenticate(other_client)

    response = api_client.post("/api/payments/create-intent/", {"booking_id": str(booking.pk)}, format="json")

    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


@pytest.mark.django_db
def test_succeeded_webhook_confirms_booking(api_client, booking, intent_id):
    response = _post_webhook(api_client, _intent_event(intent_id, payment_method="pm_card_visa"))

    assert response.status_code == 200
    assert response.json() == {"received": True, "applied": True}
    payment = Payment.objects.get(external_intent_id=intent_id)
    assert payment.status == Payment.SUCCEEDED
    assert payment.payment_method == {"id": "pm_card_visa"}
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED


@pytest.mark.django_db
def test_replayed_webhook_is_acknowledged_without_side_effects(api_client, booking, intent_id):
    payload = _intent_event(intent_id)
    _post_webhook(api_client, payload)
    booking.refresh_from_db()
    updated_at = booking.updated_at

    replay = _post_webhook(api_client, payload)

    assert replay.status_code == 200
    assert replay.json()["applied"] is False
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    assert booking.updated_at == updated_at
    assert Payment.objects.get(external_intent_id=intent_id).status == Payment.SUCCEEDED
    assert PaymentEventLog.objects.filter(intent_id=intent_id).count() == 2


@pytest.mark.django_db
def test_success_for_intent_superseded_by_reprice_is_held_for_review(api_client, client_user, booking, intent_id):
    api_client.force_authenticate(client_user)
    patched = api_client.patch(f"/api/bookings/{booking.pk}/", {"end_date": "2025-12-02"}, format="json")
    second = api_client.post("/api/payments/create-intent/", {"booking_id": str(booking.pk)}, format="json")
    api_client.force_authenticate(None)
    assert patched.status_code == 200
    assert second.json()["amount_minor"] == 24000

    late = _post_webhook(api_client, _intent_event(intent_id, amount=12000))

    assert late.status_code == 200
    stale = Payment.objects.get(external_intent_id=intent_id)
    assert stale.status == Payment.SUCCEEDED
    assert stale.needs_review is True
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING

    current = _post_webhook(api_client, _intent_event(second.json()["intent_id"], event_id="evt_2", amount=24000))

    assert current.status_code == 200
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    assert booking.total_price == Payment.objects.get(external_intent_id=second.json()["intent_id"]).amount


@pytest.mark.django_db
def test_failed_webhook_leaves_booking_pending(api_client, booking, intent_id):
    payload = _intent_event(
        intent_id,
        event_type="payment_intent.payment_failed",
        last_payment_error={"message": "Your card was declined."},
    )

    response = _post_webhook(api_client, payload)

    assert response.status_code == 200
    payment = Payment.objects.get(external_intent_id=intent_id)
    assert payment.status == Payment.FAILED
    assert payment.failure_reason == "Your card was declined."
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


@pytest.mark.django_db
def test_invalid_signature_is_rejected(api_client, booking, intent_id):
    payload = _intent_event(intent_id)

    response = _post_webhook(api_client, payload, signature=_sign(payload, secret="whsec_wrong"))

    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert Payment.objects.get(external_intent_id=intent_id).status == Payment.PENDING


@pytest.mark.django_db
def test_missing_signature_is_rejected(api_client):
    response = _post_webhook(api_client, _intent_event("pi_x"), signature="")

    assert response.status_code == 401


@pytest.mark.django_db
def test_unconfigured_webhook_secret_is_a_server_error(settings, api_client):
    settings.STRIPE_WEBHOOK_SECRET = ""

    response = _post_webhook(api_client, _intent_event("pi_x"))

    assert response.status_code == 500
    assert response.json()["error"] == "configuration_error"


@pytest.mark.django_db
def test_unhandled_event_types_are_acknowledged(api_client):
    response = _post_webhook(api_client, _intent_event("pi_x", event_type="charge.refunded"))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert not PaymentEventLog.objects.exists()


@pytest.mark.django_db
def test_manual_confirm_endpoint(api_client, client_user, booking, intent_id):
    api_client.force_authenticate(client_user)

    response = api_client.post("/api/payments/confirm/", {"intent_id": intent_id}, format="json")

    assert response.status_code == 200
    body = response.json()
    assert body["booking_confirmed"] is True
    assert body["payment"]["status"] == "succeeded"


@pytest.mark.django_db
def test_manual_confirm_rejects_unknown_outcome(api_client, client_user, intent_id):
    api_client.force_authenticate(client_user)

    response = api_client.post(
        "/api/payments/confirm/",
        {"intent_id": intent_id, "outcome": "refunded"},
        format="json",
    )

    assert response.status_code == 400
    assert "outcome" in response.json()["errors"]


@pytest.mark.django_db
def test_payment_history_is_scoped(api_client, client_user, other_client, manager, intent_id):
    api_client.force_authenticate(client_user)
    own = api_client.get("/api/payments/").json()["payments"]
    assert [payment["external_intent_id"] for payment in own] == [intent_id]

    api_client.force_authenticate(manager)
    assert len(api_client.get("/api/payments/").json()["payments"]) == 1

    api_client.force_authenticate(other_client)
    assert api_client.get("/api/payments/").json()["payments"] == []
    payment_id = Payment.objects.get().pk
    assert api_client.get(f"/api/payments/{payment_id}/").status_code == 403
