import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from admissions import config, schemas
from admissions.errors import DuplicateReference, LedgerNotFound, StudentNotFound
from admissions.ledger import TuitionLedger
from admissions.models import PaymentReference, PaymentStatus, Student, utcnow

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, routing_key: str, payload: dict) -> None: ...


class PaymentIntake:
    """Applies external payment notifications to the tuition ledger exactly once.

    The payment reference is the idempotency key. Checking it, moving the
    ledger and recording the reference happen in one transaction, and the
    unique index on ``payment_references.reference`` rejects a concurrent
    delivery of the same reference. The confirmation event is published after
    commit; a publishing failure is logged and never undoes the ledger update.
    """

    def __init__(self, db: Session, publisher: Publisher, ledger: TuitionLedger = None,
                 routing_key: str = config.PAYMENT_CONFIRMED_ROUTING_KEY):
        self.db = db
        self.publisher = publisher
        self.ledger = ledger or TuitionLedger(db)
        self.routing_key = routing_key

    def receive(self, notification: schemas.PaymentNotification) -> schemas.TuitionPaymentEvent:
        logger.info(
            "Processing payment notification: matricule=%s reference=%s amount=%s",
            notification.matricule, notification.reference, notification.amount,
        )
        try:
            event = self._apply(notification)
            self.db.commit()
        except DuplicateReference:
            self.db.rollback()
            logger.warning("Payment reference already processed: %s", notification.reference)
            raise
        except (StudentNotFound, LedgerNotFound) as exc:
            self.db.rollback()
            logger.error(
                "Payment %s cannot be applied, data integrity problem: %s %s",
                notification.reference, exc.code, exc.details,
            )
            raise
        except Exception:
            self.db.rollback()
            raise

        self._publish(event)
        return event

    def _apply(self, notification: schemas.PaymentNotification) -> schemas.TuitionPaymentEvent:
        if self._reference_seen(notification.reference):
            raise self._duplicate(notification.reference)

        student = self.db.execute(
            select(Student).where(Student.matricule == notification.matricule)
        ).scalar_one_or_none()
        if student is None:
            raise StudentNotFound("No student with this matricule", matricule=notification.matricule)

        entry = self.ledger.apply_payment(notification.enrollment_id, notification.amount)
        if entry.matricule != notification.matricule:
            logger.warning(
                "Payment %s for enrollment %s names matricule %s but the ledger belongs to %s",
                notification.reference, notification.enrollment_id, notification.matricule, entry.matricule,
            )

        processed_at = utcnow()
        self.db.add(PaymentReference(
            reference=notification.reference,
            matricule=notification.matricule,
            enrollment_id=notification.enrollment_id,
            account_id=notification.institution_account_id,
            amount=notification.amount,
            currency=notification.currency,
            payment_date=notification.payment_date,
            processed_at=processed_at,
        ))
        try:
            self.db.flush()
        except IntegrityError:
            # same reference recorded by a concurrent delivery
            raise self._duplicate(notification.reference)
        logger.info("Payment reference recorded: %s", notification.reference)

        return schemas.TuitionPaymentEvent(
            matricule=notification.matricule,
            student_name=student.full_name,
            enrollment_id=notification.enrollment_id,
            account_id=notification.institution_account_id,
            payment_amount=notification.amount,
            total_amount=entry.total_amount,
            total_paid=entry.paid_amount,
            remaining_amount=entry.remaining_amount,
            currency=entry.currency,
            payment_status=PaymentStatus(entry.payment_status),
            reference=notification.reference,
            payment_date=notification.payment_date,
            processed_at=processed_at,
        )

    def _publish(self, event: schemas.TuitionPaymentEvent) -> None:
        try:
            self.publisher.publish(self.routing_key, event.model_dump(mode="json", by_alias=True))
            logger.info("Payment event published: %s (reference=%s)", event.event_id, event.reference)
        except Exception:
            logger.exception("Failed to publish payment event for reference %s", event.reference)

    def _reference_seen(self, reference: str) -> bool:
        return self.db.execute(
            select(PaymentReference.id).where(PaymentReference.reference == reference)
        ).first() is not None

    @staticmethod
    def _duplicate(reference: str) -> DuplicateReference:
        return DuplicateReference("This payment reference has already been processed", reference=reference)
