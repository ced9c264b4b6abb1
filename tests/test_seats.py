"""Tests for classroom seat allocation."""

import threading

import pytest

from admissions.errors import (
    ClassroomFull,
    ClassroomNotFound,
    InvalidClassroomForOffer,
    NoClassroomAvailable,
)
from admissions.seats import SeatAllocator

from .conftest import seat_count


class TestAllocate:

    def test_explicit_classroom(self, db, make_offer, make_classroom):
        offer = make_offer()
        classroom = make_classroom(offer, capacity=2)

        assert SeatAllocator(db).allocate(offer.id, classroom.id) == classroom.id
        db.commit()

        assert seat_count(db, classroom.id) == 1

    def test_picks_first_classroom_with_room(self, db, make_offer, make_classroom):
        offer = make_offer()
        full = make_classroom(offer, capacity=1, current_count=1, name="L1-A")
        open_room = make_classroom(offer, capacity=5, name="L1-B")

        assert SeatAllocator(db).allocate(offer.id) == open_room.id
        db.commit()

        assert seat_count(db, full.id) == 1
        assert seat_count(db, open_room.id) == 1

    def test_full_classroom(self, db, make_offer, make_classroom):
        offer = make_offer()
        classroom = make_classroom(offer, capacity=1, current_count=1)

        with pytest.raises(ClassroomFull) as exc_info:
            SeatAllocator(db).allocate(offer.id, classroom.id)
        db.rollback()

        assert exc_info.value.details["capacity"] == 1
        assert seat_count(db, classroom.id) == 1

    def test_no_classroom_available(self, db, make_offer, make_classroom):
        offer = make_offer()
        make_classroom(offer, capacity=1, current_count=1)

        with pytest.raises(NoClassroomAvailable):
            SeatAllocator(db).allocate(offer.id)

    def test_offer_without_classrooms(self, db, make_offer):
        offer = make_offer()

        with pytest.raises(NoClassroomAvailable):
            SeatAllocator(db).allocate(offer.id)

    def test_classroom_of_another_offer(self, db, make_offer, make_classroom):
        offer = make_offer()
        other = make_offer(label="Master 1 Droit")
        classroom = make_classroom(other)

        with pytest.raises(InvalidClassroomForOffer):
            SeatAllocator(db).allocate(offer.id, classroom.id)
        db.rollback()

        assert seat_count(db, classroom.id) == 0

    def test_unknown_classroom(self, db, make_offer):
        offer = make_offer()

        with pytest.raises(ClassroomNotFound):
            SeatAllocator(db).allocate(offer.id, "missing")

    def test_concurrent_allocations_respect_capacity(self, session_factory, make_offer, make_classroom):
        offer = make_offer()
        classroom = make_classroom(offer, capacity=3)
        outcomes = []
        lock = threading.Lock()

        def worker():
            session = session_factory()
            try:
                SeatAllocator(session).allocate(offer.id, classroom.id)
                session.commit()
                result = "allocated"
            except ClassroomFull:
                session.rollback()
                result = "full"
            finally:
                session.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("allocated") == 3
        assert outcomes.count("full") == 7
        session = session_factory()
        try:
            assert seat_count(session, classroom.id) == 3
        finally:
            session.close()


class TestRelease:

    def test_release_gives_seat_back(self, db, make_offer, make_classroom):
        offer = make_offer()
        classroom = make_classroom(offer, capacity=2, current_count=2)

        SeatAllocator(db).release(classroom.id)
        db.commit()

        assert seat_count(db, classroom.id) == 1

    def test_release_never_goes_below_zero(self, db, make_offer, make_classroom):
        offer = make_offer()
        classroom = make_classroom(offer, capacity=2)

        SeatAllocator(db).release(classroom.id)
        db.commit()

        assert seat_count(db, classroom.id) == 0

    def test_release_unknown_classroom(self, db):
        with pytest.raises(ClassroomNotFound):
            SeatAllocator(db).release("missing")
