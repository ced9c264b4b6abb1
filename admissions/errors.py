"""Error taxonomy for admissions and tuition.

Every error carries a stable ``code`` that downstream consumers (HTTP clients,
failure events) can switch on, the HTTP status it maps to, and a ``details``
mapping with the identifiers involved.
"""


class AdmissionError(Exception):
    """Base exception for admission and ledger errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


# not found

class StudentNotFound(AdmissionError):
    code = "STUDENT_NOT_FOUND"
    status_code = 404


class OfferNotFound(AdmissionError):
    code = "OFFER_NOT_FOUND"
    status_code = 404


class ClassroomNotFound(AdmissionError):
    code = "CLASSROOM_NOT_FOUND"
    status_code = 404


class EnrollmentNotFound(AdmissionError):
    code = "ENROLLMENT_NOT_FOUND"
    status_code = 404


class LedgerNotFound(AdmissionError):
    code = "LEDGER_NOT_FOUND"
    status_code = 404


# conflicts

class StudentAlreadyExists(AdmissionError):
    code = "STUDENT_ALREADY_EXISTS"
    status_code = 409


class EnrollmentAlreadyExists(AdmissionError):
    code = "ENROLLMENT_ALREADY_EXISTS"
    status_code = 409


class DuplicateReference(AdmissionError):
    """The payment reference was already applied.

    Message consumers must treat this as a successful no-op.
    """

    code = "DUPLICATE_REFERENCE"
    status_code = 409


class ClassroomFull(AdmissionError):
    code = "CLASSROOM_FULL"
    status_code = 409


class InvalidStatusTransition(AdmissionError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409


# capacity

class NoClassroomAvailable(AdmissionError):
    code = "NO_CLASSROOM_AVAILABLE"
    status_code = 409


class SequenceExhausted(AdmissionError):
    """Every matricule for a (year, country) scope has been issued."""

    code = "SEQUENCE_EXHAUSTED"
    status_code = 503


# validation

class InvalidClassroomForOffer(AdmissionError):
    code = "INVALID_CLASSROOM_OFFER"
    status_code = 422


class InvalidAmount(AdmissionError):
    code = "INVALID_PAYMENT_DATA"
    status_code = 422


class InvalidAcademicYear(AdmissionError):
    code = "INVALID_ACADEMIC_YEAR"
    status_code = 422
