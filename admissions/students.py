import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from admissions import schemas
from admissions.errors import StudentAlreadyExists, StudentNotFound
from admissions.models import Student, utcnow
from admissions.sequencer import IdentifierSequencer

logger = logging.getLogger(__name__)


class StudentRegistry:
    def __init__(self, db: Session, sequencer: Optional[IdentifierSequencer] = None):
        self.db = db
        self.sequencer = sequencer or IdentifierSequencer(db)

    def register(self, data: schemas.StudentCreate) -> Student:
        # the counter advance and the student insert commit together
        if data.email and self._email_taken(data.email):
            raise StudentAlreadyExists("A student with this email already exists", email=data.email)

        matricule = None
        try:
            matricule = self.sequencer.next(data.country_code)
            student = Student(
                matricule=matricule,
                full_name=data.full_name,
                gender=data.gender.value if data.gender else None,
                birth_date=data.birth_date,
                email=data.email,
                phone=data.phone,
                registered_at=utcnow(),
            )
            self.db.add(student)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            # only the email has a unique index a caller can collide with
            if data.email and self._email_taken(data.email):
                raise StudentAlreadyExists("A student with this email already exists", email=data.email)
            logger.error("Student insert rejected by the database (matricule=%s)", matricule)
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(student)
        logger.info("Registered student %s with matricule %s", student.id, student.matricule)
        return student

    def get(self, student_id: str) -> Student:
        student = self.db.get(Student, student_id)
        if student is None:
            raise StudentNotFound("Student not found", student_id=student_id)
        return student

    def get_by_matricule(self, matricule: str) -> Student:
        student = self.db.execute(
            select(Student).where(Student.matricule == matricule)
        ).scalar_one_or_none()
        if student is None:
            raise StudentNotFound("No student with this matricule", matricule=matricule)
        return student

    def _email_taken(self, email: str) -> bool:
        return self.db.execute(
            select(Student.id).where(Student.email == email)
        ).first() is not None
