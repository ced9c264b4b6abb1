"""Matricule generation.

Format: ``PI-CI-25A0123``

- ``PI``: platform identifier
- ``CI``: two letter country code of the institution
- ``25``: registration year
- ``A``: letter cursor, advanced each time the numeric sequence rolls over
- ``0123``: four digit sequence, zero padded

One counter row exists per (year, country) scope. The increment is a single
conditional UPDATE on that row, so concurrent callers on the same scope are
serialized by the database row lock while other scopes proceed independently.
"""

import logging
import string
from typing import Optional, Tuple

from sqlalchemy import case, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from admissions import config
from admissions.errors import SequenceExhausted
from admissions.models import IdentifierSequence, utcnow

logger = logging.getLogger(__name__)

LETTERS = string.ascii_uppercase
MAX_SEQUENCE = 10000  # 0000-9999


def normalize_country_code(country_code: Optional[str], default: str = config.DEFAULT_COUNTRY_CODE) -> str:
    if not country_code or not country_code.strip():
        return default
    normalized = country_code.strip().upper()[:2]
    if len(normalized) == 1:
        normalized += "X"
    return normalized


def format_matricule(platform_id: str, country_code: str, year: str, letter_index: int, number: int) -> str:
    return f"{platform_id}-{country_code}-{year}{LETTERS[letter_index]}{number:04d}"


class IdentifierSequencer:
    """Issues strictly increasing matricules per (year, country) scope.

    Runs inside the caller's transaction: the counter advance becomes durable
    when the caller commits, and is undone if the caller rolls back.
    """

    def __init__(self, db: Session, platform_id: str = config.PLATFORM_ID,
                 default_country: str = config.DEFAULT_COUNTRY_CODE, clock=utcnow):
        self.db = db
        self.platform_id = platform_id
        self.default_country = default_country
        self.clock = clock

    def next(self, country_code: Optional[str] = None) -> str:
        """Return the next matricule for the current year and ``country_code``."""
        cc = normalize_country_code(country_code, self.default_country)
        year = f"{self.clock().year % 100:02d}"
        sequence_id = f"{year}-{cc}"

        state = self._advance(sequence_id)
        if state is None:
            if self._create(sequence_id):
                state = (0, 0)
            else:
                # created by a concurrent caller, or sitting on the last combination
                state = self._advance(sequence_id)
        if state is None:
            logger.error("Matricule sequence exhausted for scope %s", sequence_id)
            raise SequenceExhausted(
                "All matricule combinations are exhausted for this year and country",
                sequence_id=sequence_id,
            )

        letter_index, number = state
        matricule = format_matricule(self.platform_id, cc, year, letter_index, number)
        logger.debug("Issued matricule %s (scope=%s)", matricule, sequence_id)
        return matricule

    def _advance(self, sequence_id: str) -> Optional[Tuple[int, int]]:
        seq = IdentifierSequence
        rollover = seq.number_sequence + 1 >= MAX_SEQUENCE
        stmt = (
            update(seq)
            .where(seq.sequence_id == sequence_id)
            # never move past Z9999
            .where(or_(seq.letter_index < len(LETTERS) - 1, seq.number_sequence < MAX_SEQUENCE - 1))
            .values(
                letter_index=case((rollover, seq.letter_index + 1), else_=seq.letter_index),
                number_sequence=case((rollover, 0), else_=seq.number_sequence + 1),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount == 0:
            return None
        row = self.db.execute(
            select(seq.letter_index, seq.number_sequence).where(seq.sequence_id == sequence_id)
        ).one()
        return row.letter_index, row.number_sequence

    def _create(self, sequence_id: str) -> bool:
        values = {
            "sequence_id": sequence_id,
            "letter_index": 0,
            "number_sequence": 0,
            "updated_at": utcnow(),
        }
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(IdentifierSequence).values(**values).on_conflict_do_nothing(
                index_elements=["sequence_id"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(IdentifierSequence).values(**values).on_conflict_do_nothing(
                index_elements=["sequence_id"])
        else:
            self.db.add(IdentifierSequence(**values))
            self.db.flush()
            return True
        return self.db.execute(stmt).rowcount == 1
