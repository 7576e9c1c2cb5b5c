import threading
from datetime import time

import pytest
from django.db import connection, connections

from bookings import lifecycle
from bookings.models import Booking
from core.exceptions import BookingConflict

pytestmark = pytest.mark.skipif(
    connection.vendor != "postgresql",
    reason="row locks and the exclusion constraint need PostgreSQL (TEST_USE_POSTGRES=1)",
)


@pytest.mark.django_db(transaction=True)
def test_parallel_accepts_confirm_exactly_one(secured_booking):
    bookings = [
        secured_booking(start=time(14), end=time(15)),
        secured_booking(start=time(14, 30), end=time(15, 30)),
        secured_booking(start=time(14, 45), end=time(15, 15)),
    ]
    barrier = threading.Barrier(len(bookings))
    outcomes = []

    def accept(booking_id):
        try:
            barrier.wait()
            lifecycle.accept(booking_id)
            outcomes.append("confirmed")
        except BookingConflict:
            outcomes.append("conflict")
        finally:
            connections.close_all()

    threads = [threading.Thread(target=accept, args=(booking.pk,)) for booking in bookings]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["confirmed", "conflict", "conflict"]
    assert Booking.objects.filter(status=Booking.CONFIRMED).count() == 1
