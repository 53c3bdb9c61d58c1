from datetime import date, time
from decimal import Decimal

import pytest
import stripe
from rest_framework.test import APIClient

from accounts.models import User
from bookings.services import lifecycle
from spaces.models import Space


def _user(username, role=User.CLIENT, **extra):
    return User.objects.create_user(
        username=username,
        email=username,
        password="password123",
        role=role,
        **extra,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def manager(db):
    return _user("manager@example.com", role=User.MANAGER, first_name="Mara", last_name="Manager")


@pytest.fixture
def client_user(db):
    return _user("client@example.com", first_name="Carl", last_name="Client")


@pytest.fixture
def other_client(db):
    return _user("other@example.com", first_name="Olga", last_name="Other")


@pytest.fixture
def admin_user(db):
    return _user("admin@example.com", role=User.ADMIN)


@pytest.fixture
def space(manager):
    return Space.objects.create(
        name="Harbour Loft",
        city="Lisbon",
        manager=manager,
        capacity=8,
        price_per_day=Decimal("120.00"),
        currency="eur",
    )


@pytest.fixture
def hourly_space(manager):
    return Space.objects.create(
        name="Focus Room",
        city="Lisbon",
        manager=manager,
        capacity=2,
        price_per_day=Decimal("90.00"),
        price_per_hour=Decimal("15.50"),
        currency="eur",
    )


@pytest.fixture
def make_booking(client_user, space):
    def _make(
        *,
        user=None,
        target=None,
        start_date=date(2025, 12, 1),
        end_date=date(2025, 12, 1),
        start_time=time(9, 0),
        end_time=time(17, 0),
        people_count=2,
    ):
        return lifecycle.create_booking(
            user=user or client_user,
            space_id=(target or space).pk,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            people_count=people_count,
        )

    return _make


@pytest.fixture
def booking(make_booking):
    return make_booking()


@pytest.fixture
def live_stripe(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    original = (stripe.api_key, stripe.max_network_retries, stripe.default_http_client)
    yield
    stripe.api_key, stripe.max_network_retries, stripe.default_http_client = original
