# admissions/main.py
import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from admissions import config, database, events, schemas
from admissions.enrollment import EnrollmentRegistrar
from admissions.errors import AdmissionError
from admissions.ledger import TuitionLedger
from admissions.payments import PaymentIntake
from admissions.students import StudentRegistry

# logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("admission-service")

app = FastAPI(title="Admission & Tuition Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Startup: initialize DB and start the consumer that listens to payment notifications
@app.on_event("startup")
def startup():
    logger.info("Initializing DB...")
    database.init_db(config.DATABASE_URL)
    if config.START_CONSUMER:
        events.start_consumer(config.DATABASE_URL, config.RABBITMQ_URL, config.PAYMENT_QUEUE)
        logger.info("Payment notification consumer started.")
    logger.info("Startup complete.")


def get_publisher():
    return events.RabbitPublisher(config.RABBITMQ_URL)


def _http_error(exc: AdmissionError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


@app.get("/")
def root():
    return {
        "service": "Admission & Tuition Service",
        "status": "running",
        "endpoints": ["/students", "/enrollments", "/tuitions", "/payments/notifications", "/docs"],
    }


@app.get("/health")
def health(db: Session = Depends(database.get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.exception("Health check failed: %s", e)
        raise HTTPException(status_code=503, detail="Database unreachable")
    return {"status": "ok"}


# Register a student and issue a matricule
@app.post("/students", response_model=schemas.StudentOut, status_code=201)
def register_student(student_in: schemas.StudentCreate, db: Session = Depends(database.get_db)):
    try:
        student = StudentRegistry(db).register(student_in)
    except AdmissionError as e:
        raise _http_error(e)
    return schemas.StudentOut.model_validate(student)


@app.get("/students/{matricule}", response_model=schemas.StudentOut)
def get_student(matricule: str, db: Session = Depends(database.get_db)):
    try:
        student = StudentRegistry(db).get_by_matricule(matricule)
    except AdmissionError as e:
        raise _http_error(e)
    return schemas.StudentOut.model_validate(student)


# Admit a student to an offer
@app.post("/enrollments", response_model=schemas.AdmissionOut, status_code=201)
def admit(request: schemas.AdmissionRequest, db: Session = Depends(database.get_db)):
    try:
        admission = EnrollmentRegistrar(db).admit(
            request.student_id,
            request.offer_id,
            academic_year=request.academic_year,
            classroom_id=request.classroom_id,
        )
    except AdmissionError as e:
        raise _http_error(e)
    return schemas.AdmissionOut(
        enrollment=schemas.EnrollmentOut.model_validate(admission.enrollment),
        ledger=schemas.LedgerEntryOut.model_validate(admission.ledger) if admission.ledger else None,
        warnings=admission.warnings,
    )


@app.patch("/enrollments/{enrollment_id}/status", response_model=schemas.EnrollmentOut)
def update_enrollment_status(enrollment_id: str, update: schemas.EnrollmentStatusUpdate,
                             db: Session = Depends(database.get_db)):
    try:
        enrollment = EnrollmentRegistrar(db).update_status(enrollment_id, update.status)
    except AdmissionError as e:
        raise _http_error(e)
    return schemas.EnrollmentOut.model_validate(enrollment)


# Tuition balances of a student
@app.get("/tuitions/{matricule}", response_model=schemas.TuitionOut)
def get_tuitions(matricule: str, db: Session = Depends(database.get_db)):
    try:
        student, rows = TuitionLedger(db).summary_for(matricule)
    except AdmissionError as e:
        raise _http_error(e)
    return schemas.TuitionOut(
        matricule=student.matricule,
        full_name=student.full_name,
        tuitions=[
            schemas.TuitionInfo(
                enrollment_id=entry.enrollment_id,
                offer_id=offer.id,
                offer_label=offer.label,
                academic_year=enrollment.academic_year,
                total_amount=entry.total_amount,
                paid_amount=entry.paid_amount,
                remaining_amount=entry.remaining_amount,
                currency=entry.currency,
                payment_status=entry.payment_status,
            )
            for entry, offer, enrollment in rows
        ],
    )


# Direct ingress for payment notifications (same path as the broker consumer)
@app.post("/payments/notifications", response_model=schemas.TuitionPaymentEvent)
def receive_payment(notification: schemas.PaymentNotification, db: Session = Depends(database.get_db),
                    publisher=Depends(get_publisher)):
    try:
        event = PaymentIntake(db, publisher).receive(notification)
    except AdmissionError as e:
        raise _http_error(e)
    logger.info("Payment %s applied, status=%s", event.reference, event.payment_status.value)
    return event
