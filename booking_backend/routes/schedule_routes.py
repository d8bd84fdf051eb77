from datetime import time

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_serializer, field_validator, model_validator
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_actor
from booking_backend.core.actor import Actor, ActorRole
from booking_backend.core.errors import NotFoundError, PermissionDeniedError
from booking_backend.models.availability import DayOfWeek, ScheduleWindow
from booking_backend.models.practitioner import Practitioner
from booking_backend.routes.appointment_routes import booking_errors, ensure_database_ready, get_db
from booking_backend.services.directory import SqlPractitionerDirectory

router = APIRouter(tags=['schedule'])


class ScheduleWindowRequest(BaseModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_open: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @model_validator(mode='after')
    def validate_range(self) -> 'ScheduleWindowRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class ScheduleWindowResponse(BaseModel):
    id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_open: bool

    class Config:
        from_attributes = True

    @field_serializer('start_time', 'end_time')
    def serialize_time(self, value: time) -> str:
        return value.strftime('%H:%M')


def _get_practitioner(db: Session, practitioner_id: int) -> Practitioner:
    practitioner = SqlPractitionerDirectory(db).get_by_id(practitioner_id)
    if practitioner is None:
        raise NotFoundError(f'Practitioner {practitioner_id} not found.')
    return practitioner


def _day_order(window: ScheduleWindow) -> tuple[int, time]:
    return list(DayOfWeek).index(window.day_of_week), window.start_time


@router.get('/{practitioner_id}/schedule', response_model=list[ScheduleWindowResponse])
def get_schedule(practitioner_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    with booking_errors(db):
        practitioner = _get_practitioner(db, practitioner_id)
        return [
            ScheduleWindowResponse.model_validate(window)
            for window in sorted(practitioner.weekly_schedule, key=_day_order)
        ]


@router.put('/{practitioner_id}/schedule', response_model=list[ScheduleWindowResponse])
def replace_schedule(
    practitioner_id: int,
    windows: list[ScheduleWindowRequest],
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        if not (actor.is_admin or (actor.role is ActorRole.PRACTITIONER and actor.actor_id == practitioner_id)):
            raise PermissionDeniedError('Only the practitioner or an admin can change this schedule.')
        practitioner = _get_practitioner(db, practitioner_id)
        practitioner.weekly_schedule = [
            ScheduleWindow(
                day_of_week=window.day_of_week,
                start_time=window.start_time,
                end_time=window.end_time,
                is_open=window.is_open,
            )
            for window in windows
        ]
        db.commit()
        db.refresh(practitioner)
        return [
            ScheduleWindowResponse.model_validate(window)
            for window in sorted(practitioner.weekly_schedule, key=_day_order)
        ]
