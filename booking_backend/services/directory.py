"""Read-only access to the practitioner and requester directories.

The booking core does not own these records; it only needs to know that an
id exists and, for practitioners, what the weekly schedule looks like.
"""

from typing import Optional, Protocol

from sqlalchemy.orm import Session, selectinload

from booking_backend.models.practitioner import Practitioner
from booking_backend.models.requester import Requester


class PractitionerDirectory(Protocol):
    def get_by_id(self, practitioner_id: int) -> Optional[Practitioner]: ...


class RequesterDirectory(Protocol):
    def get_by_id(self, requester_id: int) -> Optional[Requester]: ...


class SqlPractitionerDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, practitioner_id: int) -> Optional[Practitioner]:
        return (
            self.db.query(Practitioner)
            .options(selectinload(Practitioner.weekly_schedule))
            .filter(Practitioner.id == practitioner_id)
            .first()
        )


class SqlRequesterDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, requester_id: int) -> Optional[Requester]:
        return self.db.query(Requester).filter(Requester.id == requester_id).first()
