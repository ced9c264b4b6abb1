"""Pytest configuration and shared fixtures.

Tests run against a temporary SQLite file database so that conditional
updates, unique constraints and multi-threaded access behave as they do
against a real server.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from admissions.database import Base
from admissions.models import Classroom, Offer, OfferType, Student


class RecordingPublisher:
    """In-memory stand-in for the RabbitMQ publisher."""

    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    def publish(self, routing_key, payload):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.messages.append((routing_key, payload))

    def routing_keys(self):
        return [key for key, _ in self.messages]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'admissions.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2025, 4, 17, 15, 12, tzinfo=timezone.utc)


@pytest.fixture
def make_offer(db):
    def _make(offer_type=OfferType.ACADEMIC, tuition_amount=Decimal("180000"), currency="XOF",
              academic_year="2024-2025", label="Licence 1 Informatique"):
        offer = Offer(
            institution_id="inst-1",
            label=label,
            offer_type=offer_type.value,
            academic_year=academic_year,
            tuition_amount=tuition_amount,
            currency=currency,
        )
        db.add(offer)
        db.commit()
        return offer

    return _make


@pytest.fixture
def make_classroom(db):
    def _make(offer, capacity=30, current_count=0, name="L1-A"):
        classroom = Classroom(offer_id=offer.id, name=name, capacity=capacity, current_count=current_count)
        db.add(classroom)
        db.commit()
        return classroom

    return _make


@pytest.fixture
def make_student(db):
    counter = {"n": 0}

    def _make(full_name="Kouamé Aya", matricule=None):
        counter["n"] += 1
        student = Student(
            matricule=matricule or f"PI-CI-25A{counter['n']:04d}",
            full_name=full_name,
            email=f"student{counter['n']}@example.com",
        )
        db.add(student)
        db.commit()
        return student

    return _make


def seat_count(db, classroom_id):
    return db.execute(select(Classroom.current_count).where(Classroom.id == classroom_id)).scalar_one()
