"""Tests for student registration."""

import pytest
from sqlalchemy.exc import IntegrityError

from admissions import schemas
from admissions.errors import StudentAlreadyExists, StudentNotFound
from admissions.students import StudentRegistry


def student_in(**overrides):
    data = {"full_name": "Kouamé Aya", "email": "aya@example.com", "country_code": "CI"}
    data.update(overrides)
    return schemas.StudentCreate(**data)


class TestStudentRegistry:

    def test_register(self, db):
        student = StudentRegistry(db).register(student_in())

        assert student.matricule.startswith("PI-CI-")
        assert StudentRegistry(db).get_by_matricule(student.matricule).id == student.id

    def test_duplicate_email(self, db):
        registry = StudentRegistry(db)
        registry.register(student_in())

        with pytest.raises(StudentAlreadyExists):
            registry.register(student_in(full_name="Another Name"))

    def test_email_taken_between_check_and_insert(self, db, monkeypatch):
        registry = StudentRegistry(db)
        registry.register(student_in())
        lookups = iter([False])
        # the early check misses a row committed concurrently
        monkeypatch.setattr(registry, "_email_taken", lambda email: next(lookups, True))

        with pytest.raises(StudentAlreadyExists):
            registry.register(student_in(full_name="Another Name"))

    def test_matricule_collision_is_not_reported_as_duplicate_email(self, db, monkeypatch):
        registry = StudentRegistry(db)
        taken = registry.register(student_in()).matricule
        monkeypatch.setattr(registry.sequencer, "next", lambda country_code=None: taken)

        with pytest.raises(IntegrityError):
            registry.register(student_in(full_name="Other Student", email="other@example.com"))

    def test_unknown_matricule(self, db):
        with pytest.raises(StudentNotFound):
            StudentRegistry(db).get_by_matricule("PI-CI-25Z9999")
