import logging
from collections.abc import Callable
from datetime import date, datetime, time
from threading import Lock

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.actor import Actor, ActorRole
from booking_backend.core.errors import (
    BookingValidationError,
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from booking_backend.models.appointment import (
    RESCHEDULABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    can_transition,
)
from booking_backend.models.practitioner import Practitioner
from booking_backend.repositories.appointment_repository import AppointmentRepository
from booking_backend.services.availability_resolver import (
    OUTSIDE_OPENING_HOURS,
    SLOT_ALREADY_BOOKED,
    normalize_slot_time,
    require_bookable_date,
)
from booking_backend.services.directory import (
    PractitionerDirectory,
    RequesterDirectory,
    SqlPractitionerDirectory,
    SqlRequesterDirectory,
)

logger = logging.getLogger(__name__)

_SLOT_LOCK_STRIPES = 64
_slot_locks = [Lock() for _ in range(_SLOT_LOCK_STRIPES)]


def slot_lock(practitioner_id: int, slot_date: date, slot_time: time) -> Lock:
    """Lock serializing writes to one (practitioner, date, time) slot.

    Unrelated slots may share a stripe. Cross-process writers are kept
    apart by the partial unique index on the appointments table.
    """
    return _slot_locks[hash((practitioner_id, slot_date, slot_time)) % _SLOT_LOCK_STRIPES]


def _clean_text(value: str | None, max_length: int, field_name: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > max_length:
        raise BookingValidationError(f'{field_name} must be {max_length} characters or fewer.')
    return normalized


class BookingLedger:
    """Owns appointment writes: creation, status changes and rescheduling."""

    def __init__(
        self,
        db: Session,
        practitioners: PractitionerDirectory | None = None,
        requesters: RequesterDirectory | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.practitioners = practitioners or SqlPractitionerDirectory(db)
        self.requesters = requesters or SqlRequesterDirectory(db)
        self.clock = clock

    def _get_practitioner(self, practitioner_id: int) -> Practitioner:
        practitioner = self.practitioners.get_by_id(practitioner_id)
        if practitioner is None:
            raise NotFoundError(f'Practitioner {practitioner_id} not found.')
        return practitioner

    def _require_open_slot(self, practitioner: Practitioner, slot_date: date, slot_time: time) -> None:
        require_bookable_date(slot_date, self.clock().date())
        if practitioner.window_covering(slot_date, slot_time) is None:
            raise BookingValidationError(OUTSIDE_OPENING_HOURS)

    def _commit_slot_write(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(SLOT_ALREADY_BOOKED) from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def get(self, actor: Actor, appointment_id: int) -> Appointment:
        appointment = AppointmentRepository.get_by_id(self.db, appointment_id)
        if appointment is None:
            raise NotFoundError(f'Appointment {appointment_id} not found.')
        if not actor.can_access(appointment.practitioner_id, appointment.requester_id):
            raise PermissionDeniedError('You cannot access this appointment.')
        return appointment

    def create(
        self,
        actor: Actor,
        practitioner_id: int,
        requester_id: int,
        slot_date: date,
        slot_time: time,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        if not actor.can_access(practitioner_id, requester_id):
            raise PermissionDeniedError('You can only book appointments on your own behalf.')

        practitioner = self._get_practitioner(practitioner_id)
        if self.requesters.get_by_id(requester_id) is None:
            raise NotFoundError(f'Requester {requester_id} not found.')

        slot_time = normalize_slot_time(slot_time)
        reason = _clean_text(reason, config.MAX_REASON_LENGTH, 'Reason')
        notes = _clean_text(notes, config.MAX_NOTES_LENGTH, 'Notes')
        self._require_open_slot(practitioner, slot_date, slot_time)

        with slot_lock(practitioner_id, slot_date, slot_time):
            if AppointmentRepository.find_slot_holder(self.db, practitioner_id, slot_date, slot_time) is not None:
                logger.warning(
                    'Booking conflict: practitioner=%s slot=%s %s', practitioner_id, slot_date, slot_time
                )
                raise ConflictError(SLOT_ALREADY_BOOKED)

            appointment = Appointment(
                practitioner_id=practitioner_id,
                requester_id=requester_id,
                date=slot_date,
                time=slot_time,
                status=AppointmentStatus.PENDING,
                reason=reason,
                notes=notes,
            )
            self.db.add(appointment)
            self._commit_slot_write()
            self.db.refresh(appointment)

        logger.info(
            'Appointment created: id=%s practitioner=%s requester=%s slot=%s %s',
            appointment.id,
            practitioner_id,
            requester_id,
            slot_date,
            slot_time,
        )
        return appointment

    def transition(self, actor: Actor, appointment_id: int, new_status: AppointmentStatus | str) -> Appointment:
        try:
            new_status = AppointmentStatus(new_status)
        except ValueError as exc:
            raise BookingValidationError(f'Unknown status: {new_status}.') from exc

        appointment = self.get(actor, appointment_id)
        if actor.role is ActorRole.REQUESTER and new_status is not AppointmentStatus.CANCELLED:
            raise PermissionDeniedError('Requesters can only cancel their appointments.')

        old_status = appointment.status
        if not can_transition(old_status, new_status):
            raise InvalidTransitionError(old_status.value, new_status.value)

        appointment.status = new_status
        self._commit()
        self.db.refresh(appointment)

        logger.info('Appointment %s status changed: %s -> %s', appointment_id, old_status.value, new_status.value)
        return appointment

    def confirm(self, actor: Actor, appointment_id: int) -> Appointment:
        return self.transition(actor, appointment_id, AppointmentStatus.CONFIRMED)

    def cancel(self, actor: Actor, appointment_id: int) -> Appointment:
        return self.transition(actor, appointment_id, AppointmentStatus.CANCELLED)

    def complete(self, actor: Actor, appointment_id: int) -> Appointment:
        return self.transition(actor, appointment_id, AppointmentStatus.COMPLETED)

    def mark_no_show(self, actor: Actor, appointment_id: int) -> Appointment:
        return self.transition(actor, appointment_id, AppointmentStatus.NO_SHOW)

    def reschedule(self, actor: Actor, appointment_id: int, new_date: date, new_time: time) -> Appointment:
        appointment = self.get(actor, appointment_id)
        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidStateError(f'Cannot reschedule an appointment that is {appointment.status.value}.')

        practitioner = self._get_practitioner(appointment.practitioner_id)
        new_time = normalize_slot_time(new_time)
        self._require_open_slot(practitioner, new_date, new_time)

        old_date, old_time = appointment.date, appointment.time
        if (old_date, old_time) == (new_date, new_time):
            return appointment

        with slot_lock(appointment.practitioner_id, new_date, new_time):
            holder = AppointmentRepository.find_slot_holder(
                self.db,
                appointment.practitioner_id,
                new_date,
                new_time,
                exclude_id=appointment.id,
            )
            if holder is not None:
                logger.warning(
                    'Reschedule conflict: appointment=%s target=%s %s', appointment_id, new_date, new_time
                )
                raise ConflictError(SLOT_ALREADY_BOOKED)

            appointment.date = new_date
            appointment.time = new_time
            self._commit_slot_write()
            self.db.refresh(appointment)

        logger.info(
            'Appointment %s rescheduled: %s %s -> %s %s', appointment_id, old_date, old_time, new_date, new_time
        )
        return appointment

    def update_details(
        self,
        actor: Actor,
        appointment_id: int,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        appointment = self.get(actor, appointment_id)
        if appointment.status not in RESCHEDULABLE_STATUSES:
            raise InvalidStateError(f'Cannot edit an appointment that is {appointment.status.value}.')

        appointment.reason = _clean_text(reason, config.MAX_REASON_LENGTH, 'Reason')
        appointment.notes = _clean_text(notes, config.MAX_NOTES_LENGTH, 'Notes')
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def delete(self, actor: Actor, appointment_id: int) -> None:
        """Administrative hard delete. Bypasses the state machine."""
        if not actor.is_admin:
            raise PermissionDeniedError('Only administrators can delete appointments.')

        appointment = AppointmentRepository.get_by_id(self.db, appointment_id)
        if appointment is None:
            raise NotFoundError(f'Appointment {appointment_id} not found.')

        self.db.delete(appointment)
        self._commit()
        logger.info('Appointment %s deleted by admin %s', appointment_id, actor.actor_id)

    def count_for_practitioner(self, actor: Actor, practitioner_id: int) -> int:
        if not (actor.is_admin or (actor.role is ActorRole.PRACTITIONER and actor.actor_id == practitioner_id)):
            raise PermissionDeniedError('You cannot view this practitioner\'s appointments.')
        return AppointmentRepository.count_for_practitioner(self.db, practitioner_id)

    def count_for_requester(self, actor: Actor, requester_id: int) -> int:
        if not (actor.is_admin or (actor.role is ActorRole.REQUESTER and actor.actor_id == requester_id)):
            raise PermissionDeniedError('You cannot view this requester\'s appointments.')
        return AppointmentRepository.count_for_requester(self.db, requester_id)
