import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from admissions.errors import InvalidAmount, LedgerNotFound, StudentNotFound
from admissions.models import (
    Enrollment,
    Offer,
    PaymentStatus,
    Student,
    TuitionLedgerEntry,
    utcnow,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal(10) ** 16


def derive_payment_status(total_amount: Decimal, paid_amount: Decimal) -> PaymentStatus:
    """Payment status as a pure function of the two amounts."""
    if paid_amount == 0:
        return PaymentStatus.UNPAID
    if paid_amount < total_amount:
        return PaymentStatus.PARTIALLY_PAID
    if paid_amount == total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.OVERPAID


def to_amount(value) -> Decimal:
    """Coerce ``value`` to a non-negative Decimal in whole cents or raise InvalidAmount."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount("Amount is not a number", amount=str(value))
    if not amount.is_finite():
        raise InvalidAmount("Amount must be finite", amount=str(value))
    if amount < 0:
        raise InvalidAmount("Amount must not be negative", amount=str(value))
    # must fit Numeric(18, 2) without rounding
    if amount >= MAX_AMOUNT:
        raise InvalidAmount("Amount is too large", amount=str(value))
    if amount != amount.quantize(CENT):
        raise InvalidAmount("Amount must have at most 2 decimal places", amount=str(value))
    return amount


class TuitionLedger:
    # paid_amount + remaining_amount == total_amount after every write

    def __init__(self, db: Session):
        self.db = db

    def open(self, enrollment_id: str, student_id: str, total_amount, currency: str,
             matricule: Optional[str] = None) -> TuitionLedgerEntry:
        total = to_amount(total_amount)
        if matricule is None:
            student = self.db.get(Student, student_id)
            if student is None:
                raise StudentNotFound("Student not found", student_id=student_id)
            matricule = student.matricule

        entry = TuitionLedgerEntry(
            enrollment_id=enrollment_id,
            student_id=student_id,
            matricule=matricule,
            total_amount=total,
            paid_amount=Decimal("0"),
            remaining_amount=total,
            currency=currency,
            payment_status=derive_payment_status(total, Decimal("0")).value,
            last_updated_at=utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        logger.info("Opened tuition ledger for enrollment %s: total=%s %s", enrollment_id, total, currency)
        return entry

    def get(self, enrollment_id: str) -> TuitionLedgerEntry:
        entry = self.db.execute(
            select(TuitionLedgerEntry)
            .where(TuitionLedgerEntry.enrollment_id == enrollment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise LedgerNotFound("No tuition ledger for this enrollment", enrollment_id=enrollment_id)
        return entry

    def apply_payment(self, enrollment_id: str, amount) -> TuitionLedgerEntry:
        amount = to_amount(amount)
        entry_cls = TuitionLedgerEntry
        result = self.db.execute(
            update(entry_cls)
            .where(entry_cls.enrollment_id == enrollment_id)
            .values(
                paid_amount=entry_cls.paid_amount + amount,
                remaining_amount=entry_cls.total_amount - (entry_cls.paid_amount + amount),
                last_updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise LedgerNotFound("No tuition ledger for this enrollment", enrollment_id=enrollment_id)

        entry = self.get(enrollment_id)
        entry.payment_status = derive_payment_status(entry.total_amount, entry.paid_amount).value
        self.db.flush()
        logger.info(
            "Applied %s to enrollment %s: paid=%s remaining=%s status=%s",
            amount, enrollment_id, entry.paid_amount, entry.remaining_amount, entry.payment_status,
        )
        return entry

    def summary_for(self, matricule: str) -> Tuple[Student, List[Tuple[TuitionLedgerEntry, Offer, Enrollment]]]:
        student = self.db.execute(
            select(Student).where(Student.matricule == matricule)
        ).scalar_one_or_none()
        if student is None:
            raise StudentNotFound("No student with this matricule", matricule=matricule)

        rows = self.db.execute(
            select(TuitionLedgerEntry, Offer, Enrollment)
            .join(Enrollment, Enrollment.id == TuitionLedgerEntry.enrollment_id)
            .join(Offer, Offer.id == Enrollment.offer_id)
            .where(TuitionLedgerEntry.student_id == student.id)
            .order_by(Enrollment.enrolled_at)
        ).all()
        return student, [tuple(row) for row in rows]
