"""Tests for matricule generation."""

import re
import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from admissions.errors import SequenceExhausted
from admissions.models import IdentifierSequence
from admissions.sequencer import IdentifierSequencer, format_matricule, normalize_country_code

MATRICULE_PATTERN = re.compile(r"^PI-[A-Z]{2}-\d{2}[A-Z]\d{4}$")


class TestNormalizeCountryCode:

    @pytest.mark.parametrize("raw, expected", [
        ("CI", "CI"),
        ("ci", "CI"),
        ("  sn ", "SN"),
        ("civ", "CI"),
        ("c", "CX"),
        (None, "CI"),
        ("", "CI"),
        ("   ", "CI"),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_country_code(raw, "CI") == expected


class TestFormatMatricule:

    def test_format(self):
        assert format_matricule("PI", "CI", "25", 0, 123) == "PI-CI-25A0123"
        assert format_matricule("PI", "SN", "25", 25, 9999) == "PI-SN-25Z9999"


class TestIdentifierSequencer:

    def test_first_identifiers_of_a_scope(self, db, fixed_clock):
        sequencer = IdentifierSequencer(db, clock=fixed_clock)

        first = sequencer.next("CI")
        second = sequencer.next("CI")
        db.commit()

        assert first == "PI-CI-25A0000"
        assert second == "PI-CI-25A0001"

    def test_country_code_is_normalized(self, db, fixed_clock):
        sequencer = IdentifierSequencer(db, clock=fixed_clock)

        assert sequencer.next("ci") == "PI-CI-25A0000"
        assert sequencer.next(None) == "PI-CI-25A0001"
        assert sequencer.next("s") == "PI-SX-25A0000"

    def test_scopes_are_independent(self, db, fixed_clock):
        sequencer = IdentifierSequencer(db, clock=fixed_clock)
        sequencer.next("CI")
        sequencer.next("CI")

        assert sequencer.next("SN") == "PI-SN-25A0000"

    def test_new_year_starts_a_new_scope(self, db, fixed_clock):
        IdentifierSequencer(db, clock=fixed_clock).next("CI")
        next_year = IdentifierSequencer(db, clock=lambda: datetime(2026, 1, 2, tzinfo=timezone.utc))

        assert next_year.next("CI") == "PI-CI-26A0000"

    def test_letter_rolls_over_after_9999(self, db, fixed_clock):
        db.add(IdentifierSequence(sequence_id="25-CI", letter_index=0, number_sequence=9999))
        db.commit()

        assert IdentifierSequencer(db, clock=fixed_clock).next("CI") == "PI-CI-25B0000"

    def test_exhausted_scope_raises_and_keeps_counter(self, db, fixed_clock):
        db.add(IdentifierSequence(sequence_id="25-CI", letter_index=25, number_sequence=9999))
        db.commit()

        with pytest.raises(SequenceExhausted) as exc_info:
            IdentifierSequencer(db, clock=fixed_clock).next("CI")
        db.rollback()

        assert exc_info.value.code == "SEQUENCE_EXHAUSTED"
        state = db.execute(
            select(IdentifierSequence.letter_index, IdentifierSequence.number_sequence)
            .where(IdentifierSequence.sequence_id == "25-CI")
        ).one()
        assert (state.letter_index, state.number_sequence) == (25, 9999)

    def test_identifiers_strictly_increase(self, db, fixed_clock):
        sequencer = IdentifierSequencer(db, clock=fixed_clock)
        issued = [sequencer.next("CI") for _ in range(25)]

        assert all(MATRICULE_PATTERN.match(m) for m in issued)
        assert issued == sorted(issued)
        assert len(set(issued)) == len(issued)

    def test_rolled_back_advance_is_not_consumed(self, db, fixed_clock):
        sequencer = IdentifierSequencer(db, clock=fixed_clock)
        sequencer.next("CI")
        db.commit()
        sequencer.next("CI")
        db.rollback()

        assert sequencer.next("CI") == "PI-CI-25A0001"

    def test_concurrent_callers_get_distinct_identifiers(self, session_factory, fixed_clock):
        issued = []
        errors = []
        lock = threading.Lock()

        def worker():
            for _ in range(5):
                session = session_factory()
                try:
                    matricule = IdentifierSequencer(session, clock=fixed_clock).next("CI")
                    session.commit()
                    with lock:
                        issued.append(matricule)
                except Exception as exc:
                    session.rollback()
                    with lock:
                        errors.append(exc)
                finally:
                    session.close()

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(issued) == 30
        assert len(set(issued)) == 30
        assert sorted(issued)[0] == "PI-CI-25A0000"
        assert sorted(issued)[-1] == "PI-CI-25A0029"
