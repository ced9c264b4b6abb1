import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from admissions.models import EnrollmentStatus, PaymentStatus, utcnow


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


# students

class StudentCreate(CamelModel):
    full_name: str = Field(min_length=1, max_length=255)
    gender: Optional[Gender] = None
    birth_date: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country_code: Optional[str] = None


class StudentOut(CamelModel):
    id: str
    matricule: str
    full_name: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    registered_at: datetime


# enrollments

class AdmissionRequest(CamelModel):
    student_id: str
    offer_id: str
    academic_year: Optional[str] = None
    classroom_id: Optional[str] = None


class EnrollmentOut(CamelModel):
    id: str
    student_id: str
    offer_id: str
    institution_id: str
    classroom_id: Optional[str] = None
    academic_year: str
    status: EnrollmentStatus
    enrolled_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class LedgerEntryOut(CamelModel):
    enrollment_id: str
    student_id: str
    matricule: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    currency: str
    payment_status: PaymentStatus
    last_updated_at: datetime


class AdmissionOut(CamelModel):
    enrollment: EnrollmentOut
    ledger: Optional[LedgerEntryOut] = None
    warnings: List[str] = []


class EnrollmentStatusUpdate(CamelModel):
    status: EnrollmentStatus


# tuition

class TuitionInfo(CamelModel):
    enrollment_id: str
    offer_id: str
    offer_label: str
    academic_year: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    currency: str
    payment_status: PaymentStatus


class TuitionOut(CamelModel):
    matricule: str
    full_name: str
    tuitions: List[TuitionInfo]


# payments

class PaymentNotification(CamelModel):
    matricule: str
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)
    currency: str = Field(min_length=3, max_length=3)
    reference: str = Field(min_length=1, max_length=128)
    enrollment_id: str
    institution_account_id: Optional[str] = None
    payment_date: Optional[datetime] = None


class TuitionPaymentEvent(CamelModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    matricule: str
    student_name: str
    enrollment_id: str
    account_id: Optional[str] = None
    payment_amount: Decimal
    total_amount: Decimal
    total_paid: Decimal
    remaining_amount: Decimal
    currency: str
    payment_status: PaymentStatus
    reference: str
    payment_date: Optional[datetime] = None
    processed_at: datetime


class TuitionPaymentFailedEvent(CamelModel):
    event_type: str = "TuitionPaymentFailed"
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    matricule: Optional[str] = None
    enrollment_id: Optional[str] = None
    reference: Optional[str] = None
    error_code: str
    reason: str
    timestamp: datetime = Field(default_factory=utcnow)
