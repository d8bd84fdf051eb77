"""Week and month calendar grids with appointments bucketed per day.

Grids are rebuilt from the ledger on every call. Weeks start on Monday and
the month view is always 6 full weeks (42 cells) so the layout does not
change from one month to the next.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.orm import Session

from booking_backend.core.actor import Actor, ActorRole
from booking_backend.core.errors import BookingValidationError, PermissionDeniedError
from booking_backend.models.appointment import Appointment
from booking_backend.repositories.appointment_repository import AppointmentRepository

DAYS_PER_WEEK = 7
MONTH_GRID_WEEKS = 6
MONTH_GRID_SIZE = DAYS_PER_WEEK * MONTH_GRID_WEEKS


@dataclass(frozen=True)
class CalendarCell:
    date: date
    in_focus: bool
    appointments: list[Appointment] = field(default_factory=list)


def start_of_week(anchor: date) -> date:
    return anchor - timedelta(days=anchor.weekday())


def week_dates(anchor: date) -> list[date]:
    monday = start_of_week(anchor)
    return [monday + timedelta(days=offset) for offset in range(DAYS_PER_WEEK)]


def month_grid(anchor: date) -> list[tuple[date, bool]]:
    """42 (date, in_focus) pairs covering anchor's month.

    Leading days come from the previous month so the grid starts on a
    Monday; trailing days from the next month fill it to six weeks.
    """
    first_of_month = anchor.replace(day=1)
    grid_start = start_of_week(first_of_month)
    grid: list[tuple[date, bool]] = []
    for offset in range(MONTH_GRID_SIZE):
        day = grid_start + timedelta(days=offset)
        grid.append((day, day.year == anchor.year and day.month == anchor.month))
    return grid


def bucket_by_date(days: list[tuple[date, bool]], appointments: list[Appointment]) -> list[CalendarCell]:
    buckets: dict[date, list[Appointment]] = {day: [] for day, _ in days}
    for appointment in appointments:
        if appointment.date in buckets:
            buckets[appointment.date].append(appointment)
    return [CalendarCell(date=day, in_focus=in_focus, appointments=buckets[day]) for day, in_focus in days]


class CalendarViewBuilder:
    def __init__(self, db: Session):
        self.db = db

    def _load(self, days: list[tuple[date, bool]], practitioner_id: int | None, requester_id: int | None):
        return AppointmentRepository.list_between(
            self.db,
            days[0][0],
            days[-1][0],
            practitioner_id=practitioner_id,
            requester_id=requester_id,
        )

    def build_week(
        self,
        anchor: date,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
    ) -> list[CalendarCell]:
        days = [(day, True) for day in week_dates(anchor)]
        return bucket_by_date(days, self._load(days, practitioner_id, requester_id))

    def build_month(
        self,
        anchor: date,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
    ) -> list[CalendarCell]:
        days = month_grid(anchor)
        return bucket_by_date(days, self._load(days, practitioner_id, requester_id))

    def _scope(self, actor: Actor, practitioner_id: int | None, requester_id: int | None) -> tuple[int | None, int | None]:
        if (practitioner_id is None) == (requester_id is None):
            raise BookingValidationError('Exactly one of practitioner_id or requester_id is required.')
        if actor.role is ActorRole.PRACTITIONER and practitioner_id != actor.actor_id:
            raise PermissionDeniedError('Practitioners can only view their own calendar.')
        if actor.role is ActorRole.REQUESTER and requester_id != actor.actor_id:
            raise PermissionDeniedError('Requesters can only view their own calendar.')
        return practitioner_id, requester_id

    def week_for(
        self,
        actor: Actor,
        anchor: date,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
    ) -> list[CalendarCell]:
        practitioner_id, requester_id = self._scope(actor, practitioner_id, requester_id)
        return self.build_week(anchor, practitioner_id=practitioner_id, requester_id=requester_id)

    def month_for(
        self,
        actor: Actor,
        anchor: date,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
    ) -> list[CalendarCell]:
        practitioner_id, requester_id = self._scope(actor, practitioner_id, requester_id)
        return self.build_month(anchor, practitioner_id=practitioner_id, requester_id=requester_id)
