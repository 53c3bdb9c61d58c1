from datetime import date

import pytest

from bookings.models import Booking
from core.authorization import ADMIN, OWNER, SPACE_MANAGER, authorize, can, capabilities_for, scope_visible
from core.exceptions import Forbidden
from payments.models import Payment


@pytest.mark.django_db
def test_capabilities_reflect_relation_to_booking(booking, client_user, manager, admin_user, other_client):
    assert capabilities_for(client_user, booking) == {OWNER}
    assert capabilities_for(manager, booking) == {SPACE_MANAGER}
    assert capabilities_for(admin_user, booking) == {ADMIN}
    assert capabilities_for(other_client, booking) == set()


@pytest.mark.django_db
def test_superuser_counts_as_admin(booking, other_client):
    other_client.is_superuser = True

    assert can(other_client, "confirm", booking)
    assert not can(other_client, "update", booking)


@pytest.mark.django_db
@pytest.mark.parametrize(
    "operation, owner, space_manager, admin",
    [
        ("view", True, True, True),
        ("update", True, False, False),
        ("cancel", True, True, True),
        ("confirm", False, True, True),
        ("complete", False, True, True),
        ("create_intent", True, False, False),
        ("confirm_payment", True, False, True),
    ],
)
def test_operation_policies(booking, client_user, manager, admin_user, operation, owner, space_manager, admin):
    assert can(client_user, operation, booking) is owner
    assert can(manager, operation, booking) is space_manager
    assert can(admin_user, operation, booking) is admin


@pytest.mark.django_db
def test_system_actor_may_only_confirm_and_complete(booking):
    assert can(None, "confirm", booking)
    assert can(None, "complete", booking)
    assert not can(None, "cancel", booking)
    with pytest.raises(Forbidden):
        authorize(None, "view", booking)


@pytest.mark.django_db
def test_unrelated_user_has_no_rights(booking, other_client):
    with pytest.raises(Forbidden) as excinfo:
        authorize(other_client, "cancel", booking)
    assert "cancel" in str(excinfo.value.detail)


@pytest.mark.django_db
def test_visible_scope_follows_relation_to_booking(
    booking, make_booking, client_user, manager, admin_user, other_client
):
    own = make_booking(user=other_client, start_date=date(2025, 12, 5), end_date=date(2025, 12, 5))
    bookings = Booking.objects.all()

    assert set(scope_visible(client_user, bookings)) == {booking}
    assert set(scope_visible(other_client, bookings)) == {own}
    assert set(scope_visible(manager, bookings)) == {booking, own}
    assert set(scope_visible(admin_user, bookings)) == {booking, own}


@pytest.mark.django_db
def test_visible_scope_follows_booking_path_for_payments(booking, client_user, manager, other_client):
    payment = Payment.objects.create(booking=booking, external_intent_id="pi_test_scope", amount=booking.total_price)
    payments = Payment.objects.all()

    assert list(scope_visible(client_user, payments, booking_path="booking")) == [payment]
    assert list(scope_visible(manager, payments, booking_path="booking")) == [payment]
    assert not scope_visible(other_client, payments, booking_path="booking").exists()
