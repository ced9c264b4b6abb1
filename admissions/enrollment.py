"""Admission of students to offers and enrollment status changes."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from admissions import config
from admissions.errors import (
    ClassroomFull,
    EnrollmentAlreadyExists,
    EnrollmentNotFound,
    InvalidAcademicYear,
    InvalidStatusTransition,
    NoClassroomAvailable,
    OfferNotFound,
    StudentNotFound,
)
from admissions.ledger import TuitionLedger
from admissions.models import (
    Enrollment,
    EnrollmentStatus,
    Offer,
    Student,
    TuitionLedgerEntry,
    utcnow,
)
from admissions.seats import SeatAllocator

logger = logging.getLogger(__name__)

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")

ALLOWED_TRANSITIONS = {
    EnrollmentStatus.ENROLLED: {
        EnrollmentStatus.COMPLETED,
        EnrollmentStatus.CANCELLED,
        EnrollmentStatus.LEFT,
    },
}

# leaving the offer gives the classroom seat back
SEAT_RELEASING_STATUSES = {EnrollmentStatus.CANCELLED, EnrollmentStatus.LEFT}


def validate_academic_year(value: Optional[str]) -> str:
    match = ACADEMIC_YEAR_PATTERN.match(value or "")
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise InvalidAcademicYear("Academic year must look like 2024-2025", academic_year=value)
    return value


@dataclass
class Admission:
    enrollment: Enrollment
    ledger: Optional[TuitionLedgerEntry] = None
    warnings: List[str] = field(default_factory=list)


class EnrollmentRegistrar:
    def __init__(self, db: Session, seats: Optional[SeatAllocator] = None,
                 ledger: Optional[TuitionLedger] = None):
        self.db = db
        self.seats = seats or SeatAllocator(db)
        self.ledger = ledger or TuitionLedger(db)

    def admit(self, student_id: str, offer_id: str, academic_year: Optional[str] = None,
              classroom_id: Optional[str] = None) -> Admission:
        # seat, enrollment and ledger entry commit together or not at all
        try:
            admission = self._admit(student_id, offer_id, academic_year, classroom_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(admission.enrollment)
        if admission.ledger is not None:
            self.db.refresh(admission.ledger)
        logger.info(
            "Admitted student %s to offer %s (%s): enrollment=%s classroom=%s",
            student_id, offer_id, admission.enrollment.academic_year,
            admission.enrollment.id, admission.enrollment.classroom_id,
        )
        return admission

    def update_status(self, enrollment_id: str, new_status) -> Enrollment:
        """Move an ENROLLED enrollment to COMPLETED, CANCELLED or LEFT."""
        new_status = EnrollmentStatus(new_status)
        try:
            enrollment = self.get(enrollment_id)
            current = EnrollmentStatus(enrollment.status)
            if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
                raise InvalidStatusTransition(
                    "Enrollment status cannot change this way",
                    enrollment_id=enrollment_id,
                    current=current.value,
                    requested=new_status.value,
                )

            now = utcnow()
            values = {"status": new_status.value, "updated_at": now}
            if new_status == EnrollmentStatus.COMPLETED:
                values["completed_at"] = now
            result = self.db.execute(
                update(Enrollment)
                .where(Enrollment.id == enrollment_id, Enrollment.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidStatusTransition(
                    "Enrollment status changed concurrently",
                    enrollment_id=enrollment_id,
                    requested=new_status.value,
                )

            if new_status in SEAT_RELEASING_STATUSES and enrollment.classroom_id:
                self.seats.release(enrollment.classroom_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Enrollment %s moved from %s to %s", enrollment_id, current.value, new_status.value)
        return self.get(enrollment_id)

    def get(self, enrollment_id: str) -> Enrollment:
        enrollment = self.db.execute(
            select(Enrollment)
            .where(Enrollment.id == enrollment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if enrollment is None:
            raise EnrollmentNotFound("Enrollment not found", enrollment_id=enrollment_id)
        return enrollment

    def _admit(self, student_id, offer_id, academic_year, classroom_id) -> Admission:
        offer = self.db.get(Offer, offer_id)
        if offer is None:
            raise OfferNotFound("Offer not found", offer_id=offer_id)
        student = self.db.get(Student, student_id)
        if student is None:
            raise StudentNotFound("Student not found", student_id=student_id)
        year = validate_academic_year(academic_year or offer.academic_year)

        # early exit; the unique constraint is what actually prevents duplicates
        if self._enrollment_exists(student_id, offer_id, year):
            raise self._already_exists(student_id, offer_id, year)

        warnings = []
        assigned_classroom = None
        if offer.is_seat_bearing:
            try:
                assigned_classroom = self.seats.allocate(offer_id, classroom_id)
            except (NoClassroomAvailable, ClassroomFull) as exc:
                logger.warning("Admitting without classroom (offer=%s): %s", offer_id, exc.message)
                warnings.append(exc.code)

        enrollment = Enrollment(
            student_id=student_id,
            offer_id=offer_id,
            institution_id=offer.institution_id,
            classroom_id=assigned_classroom,
            academic_year=year,
            status=EnrollmentStatus.ENROLLED.value,
            enrolled_at=utcnow(),
        )
        self.db.add(enrollment)
        try:
            self.db.flush()
        except IntegrityError:
            raise self._already_exists(student_id, offer_id, year)

        entry = None
        if offer.tuition_amount is not None and offer.tuition_amount > 0:
            entry = self.ledger.open(
                enrollment.id,
                student_id,
                offer.tuition_amount,
                offer.currency or config.DEFAULT_CURRENCY,
                matricule=student.matricule,
            )
        return Admission(enrollment=enrollment, ledger=entry, warnings=warnings)

    def _enrollment_exists(self, student_id, offer_id, year) -> bool:
        return self.db.execute(
            select(Enrollment.id).where(
                Enrollment.student_id == student_id,
                Enrollment.offer_id == offer_id,
                Enrollment.academic_year == year,
            )
        ).first() is not None

    @staticmethod
    def _already_exists(student_id, offer_id, year) -> EnrollmentAlreadyExists:
        return EnrollmentAlreadyExists(
            "Student is already enrolled in this offer for this academic year",
            student_id=student_id,
            offer_id=offer_id,
            academic_year=year,
        )
