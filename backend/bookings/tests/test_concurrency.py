import threading
from datetime import date, time

import pytest
from django.db import connection, connections

from bookings.models import Booking
from bookings.services import lifecycle
from core.exceptions import Conflict

pytestmark = pytest.mark.skipif(
    connection.vendor != "postgresql",
    reason="row locks are only meaningful on PostgreSQL",
)


@pytest.mark.django_db(transaction=True)
def test_concurrent_requests_for_the_same_slot_book_it_once(space, client_user, other_client):
    barrier = threading.Barrier(4)
    outcomes = []

    def attempt(user):
        try:
            barrier.wait()
            lifecycle.create_booking(
                user=user,
                space_id=space.pk,
                start_date=date(2025, 12, 1),
                end_date=date(2025, 12, 1),
                start_time=time(9, 0),
                end_time=time(17, 0),
                people_count=1,
            )
            outcomes.append("created")
        except Conflict:
            outcomes.append("conflict")
        finally:
            connections.close_all()

    threads = [threading.Thread(target=attempt, args=(user,)) for user in (client_user, other_client) * 2]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict", "conflict", "conflict", "created"]
    assert Booking.objects.filter(space=space).count() == 1
