import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from admissions.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OfferType(str, enum.Enum):
    ACADEMIC = "ACADEMIC"
    PROFESSIONAL = "PROFESSIONAL"


class EnrollmentStatus(str, enum.Enum):
    ENROLLED = "ENROLLED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    LEFT = "LEFT"


class PaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERPAID = "OVERPAID"


class Student(Base):
    __tablename__ = "students"
    id = Column(String(36), primary_key=True, default=_uuid)
    matricule = Column(String(32), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    gender = Column(String(16), nullable=True)
    birth_date = Column(Date, nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(32), nullable=True)
    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)


class Offer(Base):
    """Training offer. Owned by the catalogue; only read here."""

    __tablename__ = "offers"
    id = Column(String(36), primary_key=True, default=_uuid)
    institution_id = Column(String(36), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    offer_type = Column(String(20), nullable=False, default=OfferType.ACADEMIC.value)
    academic_year = Column(String(9), nullable=False)
    tuition_amount = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_seat_bearing(self) -> bool:
        return self.offer_type == OfferType.ACADEMIC.value


class Classroom(Base):
    __tablename__ = "classrooms"
    __table_args__ = (
        CheckConstraint("current_count >= 0", name="ck_classroom_count_positive"),
        CheckConstraint("current_count <= capacity", name="ck_classroom_count_capacity"),
    )
    id = Column(String(36), primary_key=True, default=_uuid)
    offer_id = Column(String(36), ForeignKey("offers.id"), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    capacity = Column(Integer, nullable=False)
    current_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)


class Enrollment(Base):
    __tablename__ = "enrollments"
    # authoritative guard against concurrent duplicate admissions
    __table_args__ = (
        UniqueConstraint("student_id", "offer_id", "academic_year", name="uq_enrollment_student_offer_year"),
    )
    id = Column(String(36), primary_key=True, default=_uuid)
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    offer_id = Column(String(36), ForeignKey("offers.id"), nullable=False, index=True)
    institution_id = Column(String(36), nullable=False)
    classroom_id = Column(String(36), ForeignKey("classrooms.id"), nullable=True)
    academic_year = Column(String(9), nullable=False)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ENROLLED.value)
    enrolled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class TuitionLedgerEntry(Base):
    __tablename__ = "tuition_ledger"
    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_ledger_paid_positive"),
    )
    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(String(36), ForeignKey("enrollments.id"), nullable=False, unique=True)
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    matricule = Column(String(32), nullable=False, index=True)
    total_amount = Column(Numeric(18, 2), nullable=False)
    paid_amount = Column(Numeric(18, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value)
    last_updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PaymentReference(Base):
    __tablename__ = "payment_references"
    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(128), nullable=False, unique=True)
    matricule = Column(String(32), nullable=False, index=True)
    enrollment_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(64), nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class IdentifierSequence(Base):
    __tablename__ = "identifier_sequences"
    sequence_id = Column(String(16), primary_key=True)  # "<YY>-<CC>"
    letter_index = Column(Integer, nullable=False, default=0)
    number_sequence = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
