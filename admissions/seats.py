import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from admissions.errors import (
    ClassroomFull,
    ClassroomNotFound,
    InvalidClassroomForOffer,
    NoClassroomAvailable,
)
from admissions.models import Classroom, utcnow

logger = logging.getLogger(__name__)


class SeatAllocator:
    """Keeps classroom occupancy within capacity.

    ``current_count`` only ever moves through conditional UPDATEs, so the
    capacity check and the increment are one statement per classroom. Like the
    other components it works inside the caller's transaction and never commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def allocate(self, offer_id: str, classroom_id: Optional[str] = None) -> str:
        """Take a seat for ``offer_id`` and return the classroom id."""
        if classroom_id:
            return self._allocate_in(offer_id, classroom_id)

        candidates = self.db.execute(
            select(Classroom.id)
            .where(Classroom.offer_id == offer_id, Classroom.current_count < Classroom.capacity)
            .order_by(Classroom.created_at, Classroom.id)
        ).scalars().all()
        for candidate in candidates:
            # another admission may have taken the last seat since the scan
            if self._try_increment(candidate):
                logger.info("Seat allocated in classroom %s (offer=%s)", candidate, offer_id)
                return candidate

        raise NoClassroomAvailable("No classroom available for this offer", offer_id=offer_id)

    def release(self, classroom_id: str) -> None:
        """Give a seat back. Releasing from an empty classroom is a logged no-op."""
        result = self.db.execute(
            update(Classroom)
            .where(Classroom.id == classroom_id, Classroom.current_count > 0)
            .values(current_count=Classroom.current_count - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("Seat released in classroom %s", classroom_id)
            return
        if self.db.get(Classroom, classroom_id) is None:
            raise ClassroomNotFound("Classroom not found", classroom_id=classroom_id)
        logger.warning("Attempted to release a seat from empty classroom %s", classroom_id)

    def _allocate_in(self, offer_id: str, classroom_id: str) -> str:
        row = self.db.execute(
            select(Classroom.offer_id, Classroom.capacity, Classroom.current_count)
            .where(Classroom.id == classroom_id)
        ).one_or_none()
        if row is None:
            raise ClassroomNotFound("Classroom not found", classroom_id=classroom_id)
        if row.offer_id != offer_id:
            raise InvalidClassroomForOffer(
                "Classroom does not belong to this offer",
                classroom_id=classroom_id,
                offer_id=offer_id,
                classroom_offer_id=row.offer_id,
            )
        if not self._try_increment(classroom_id):
            raise ClassroomFull(
                "Classroom is full",
                classroom_id=classroom_id,
                capacity=row.capacity,
            )
        logger.info("Seat allocated in classroom %s (offer=%s)", classroom_id, offer_id)
        return classroom_id

    def _try_increment(self, classroom_id: str) -> bool:
        result = self.db.execute(
            update(Classroom)
            .where(Classroom.id == classroom_id, Classroom.current_count < Classroom.capacity)
            .values(current_count=Classroom.current_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
