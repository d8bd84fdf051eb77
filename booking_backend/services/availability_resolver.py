from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import BookingValidationError, NotFoundError
from booking_backend.models.availability import DayOfWeek
from booking_backend.models.practitioner import Practitioner
from booking_backend.repositories.appointment_repository import AppointmentRepository
from booking_backend.services.directory import PractitionerDirectory, SqlPractitionerDirectory

OUTSIDE_OPENING_HOURS = 'outside opening hours'
SLOT_ALREADY_BOOKED = 'slot already booked'
SLOT_AVAILABLE = 'slot available'


@dataclass(frozen=True)
class AvailabilityResult:
    practitioner_id: int
    date: date
    time: time
    available: bool
    reason: str


@dataclass(frozen=True)
class OpenSlot:
    date: date
    time: time
    end_time: time


def normalize_slot_time(slot_time: time) -> time:
    return slot_time.replace(second=0, microsecond=0, tzinfo=None)


def iterate_slot_starts(start_time: time, end_time: time, increment_minutes: int) -> list[time]:
    """Slot starts on the increment grid inside [start_time, end_time)."""
    slots: list[time] = []
    anchor = date.min
    current = datetime.combine(anchor, normalize_slot_time(start_time))
    window_end = datetime.combine(anchor, end_time)

    if current.minute % increment_minutes != 0:
        current += timedelta(minutes=increment_minutes - (current.minute % increment_minutes))

    while current < window_end and current.date() == anchor:
        slots.append(current.time())
        current += timedelta(minutes=increment_minutes)

    return slots


def require_bookable_date(slot_date: date, today: date) -> None:
    if slot_date < today:
        raise BookingValidationError('Appointments cannot be placed in the past.')


class AvailabilityResolver:
    """Advisory slot checks used while a booking form is being filled in.

    The answer can be stale by the time a booking is submitted; the ledger
    re-checks under its own lock before committing.
    """

    def __init__(
        self,
        db: Session,
        practitioners: PractitionerDirectory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.practitioners = practitioners or SqlPractitionerDirectory(db)
        self.clock = clock

    def _get_practitioner(self, practitioner_id: int) -> Practitioner:
        practitioner = self.practitioners.get_by_id(practitioner_id)
        if practitioner is None:
            raise NotFoundError(f'Practitioner {practitioner_id} not found.')
        return practitioner

    def check_availability(self, practitioner_id: int, slot_date: date, slot_time: time) -> AvailabilityResult:
        practitioner = self._get_practitioner(practitioner_id)
        require_bookable_date(slot_date, self.clock().date())
        slot_time = normalize_slot_time(slot_time)

        if practitioner.window_covering(slot_date, slot_time) is None:
            return AvailabilityResult(practitioner_id, slot_date, slot_time, False, OUTSIDE_OPENING_HOURS)

        if AppointmentRepository.find_slot_holder(self.db, practitioner_id, slot_date, slot_time) is not None:
            return AvailabilityResult(practitioner_id, slot_date, slot_time, False, SLOT_ALREADY_BOOKED)

        return AvailabilityResult(practitioner_id, slot_date, slot_time, True, SLOT_AVAILABLE)

    def open_slots(self, practitioner_id: int, start_date: date, days: int) -> list[OpenSlot]:
        if days < 1 or days > config.MAX_OPEN_SLOT_RANGE_DAYS:
            raise BookingValidationError(f'days must be between 1 and {config.MAX_OPEN_SLOT_RANGE_DAYS}.')

        practitioner = self._get_practitioner(practitioner_id)
        now = self.clock()
        first_day = max(start_date, now.date())
        last_day = start_date + timedelta(days=days - 1)
        if last_day < first_day:
            return []

        booked = AppointmentRepository.booked_slots(self.db, practitioner_id, first_day, last_day)
        increment = config.SLOT_INCREMENT_MINUTES
        open_slots: list[OpenSlot] = []

        current_day = first_day
        while current_day <= last_day:
            day = DayOfWeek.for_date(current_day)
            windows = sorted(
                (window for window in practitioner.weekly_schedule if window.is_open and window.day_of_week == day),
                key=lambda window: window.start_time,
            )
            seen: set[time] = set()
            for window in windows:
                for slot_start in iterate_slot_starts(window.start_time, window.end_time, increment):
                    if slot_start in seen:
                        continue
                    seen.add(slot_start)
                    if current_day == now.date() and slot_start <= now.time():
                        continue
                    if (current_day, slot_start) in booked:
                        continue
                    slot_end = (datetime.combine(current_day, slot_start) + timedelta(minutes=increment)).time()
                    open_slots.append(OpenSlot(date=current_day, time=slot_start, end_time=slot_end))

            current_day += timedelta(days=1)

        return open_slots
