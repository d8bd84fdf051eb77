from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_serializer, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_actor
from booking_backend.core import config
from booking_backend.core.actor import Actor
from booking_backend.core.errors import BookingError
from booking_backend.database import SessionLocal, ensure_appointment_schema
from booking_backend.models.appointment import AppointmentStatus
from booking_backend.services.appointment_query import AppointmentFilter, AppointmentQueryService, Page
from booking_backend.services.availability_resolver import AvailabilityResolver
from booking_backend.services.booking_ledger import BookingLedger
from booking_backend.services.calendar_view import CalendarViewBuilder

router = APIRouter(tags=['appointments'])

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _clean_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    practitioner_id: int
    requester_id: int
    date: date
    time: time
    reason: str | None = None
    notes: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _clean_optional_text(value, config.MAX_REASON_LENGTH, 'Reason')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _clean_optional_text(value, config.MAX_NOTES_LENGTH, 'Notes')


class UpdateAppointmentRequest(BaseModel):
    reason: str | None = None
    notes: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _clean_optional_text(value, config.MAX_REASON_LENGTH, 'Reason')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _clean_optional_text(value, config.MAX_NOTES_LENGTH, 'Notes')


class RescheduleRequest(BaseModel):
    date: date
    time: time


class AppointmentResponse(BaseModel):
    id: int
    practitioner_id: int
    requester_id: int
    date: date
    time: time
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_serializer('time')
    def serialize_time(self, value: time) -> str:
        return value.strftime('%H:%M')


class AppointmentPageResponse(BaseModel):
    content: list[AppointmentResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool


class AvailabilityResponse(BaseModel):
    practitioner_id: int
    date: date
    time: time
    available: bool
    reason: str

    class Config:
        from_attributes = True

    @field_serializer('time')
    def serialize_time(self, value: time) -> str:
        return value.strftime('%H:%M')


class OpenSlotResponse(BaseModel):
    date: date
    time: time
    end_time: time

    class Config:
        from_attributes = True

    @field_serializer('time', 'end_time')
    def serialize_time(self, value: time) -> str:
        return value.strftime('%H:%M')


class CalendarCellResponse(BaseModel):
    date: date
    in_focus: bool
    appointments: list[AppointmentResponse]

    class Config:
        from_attributes = True


class CountResponse(BaseModel):
    count: int


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Callable[[], datetime]:
    return datetime.now


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@contextmanager
def booking_errors(db: Session) -> Iterator[None]:
    """Translate booking and storage failures into HTTP errors."""
    try:
        yield
    except BookingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def to_page_response(page: Page) -> AppointmentPageResponse:
    return AppointmentPageResponse(
        content=[AppointmentResponse.model_validate(appointment) for appointment in page.content],
        page=page.page,
        size=page.size,
        total_elements=page.total_elements,
        total_pages=page.total_pages,
        first=page.first,
        last=page.last,
    )


def _list_page(
    db: Session,
    actor: Actor,
    clock: Callable[[], datetime],
    filters: AppointmentFilter,
    page: int,
    size: int,
    sort_by: str,
    sort_dir: str,
) -> AppointmentPageResponse:
    result = AppointmentQueryService(db, clock=clock).list_appointments(
        actor,
        filters,
        page=page,
        size=size,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )
    return to_page_response(result)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        appointment = BookingLedger(db, clock=clock).create(
            actor,
            practitioner_id=data.practitioner_id,
            requester_id=data.requester_id,
            slot_date=data.date,
            slot_time=data.time,
            reason=data.reason,
            notes=data.notes,
        )
        return AppointmentResponse.model_validate(appointment)


@router.get('', response_model=AppointmentPageResponse)
def list_appointments(
    practitioner_id: int | None = Query(default=None),
    requester_id: int | None = Query(default=None),
    status_filter: str = Query(default='ALL', alias='status'),
    timeframe: str = Query(default='ALL'),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    sort_by: str = Query(default='date'),
    sort_dir: str = Query(default='desc'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        filters = AppointmentFilter.from_params(
            practitioner_id=practitioner_id,
            requester_id=requester_id,
            status=status_filter,
            timeframe=timeframe,
            date_from=date_from,
            date_to=date_to,
        )
        return _list_page(db, actor, clock, filters, page, size, sort_by, sort_dir)


@router.get('/check-availability', response_model=AvailabilityResponse)
def check_availability(
    practitioner_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    slot_time: time = Query(..., alias='time'),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        result = AvailabilityResolver(db, clock=clock).check_availability(practitioner_id, slot_date, slot_time)
        return AvailabilityResponse.model_validate(result)


@router.get('/doctor/{practitioner_id}', response_model=AppointmentPageResponse)
def list_practitioner_appointments(
    practitioner_id: int,
    status_filter: str = Query(default='ALL', alias='status'),
    timeframe: str = Query(default='ALL'),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    sort_by: str = Query(default='date'),
    sort_dir: str = Query(default='desc'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        filters = AppointmentFilter.from_params(
            practitioner_id=practitioner_id,
            status=status_filter,
            timeframe=timeframe,
        )
        return _list_page(db, actor, clock, filters, page, size, sort_by, sort_dir)


@router.get('/doctor/{practitioner_id}/all', response_model=list[AppointmentResponse])
def list_all_practitioner_appointments(
    practitioner_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        appointments = AppointmentQueryService(db).list_all(actor, AppointmentFilter(practitioner_id=practitioner_id))
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.get('/doctor/{practitioner_id}/date', response_model=list[AppointmentResponse])
def list_practitioner_appointments_for_day(
    practitioner_id: int,
    day: date = Query(..., alias='date'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        appointments = AppointmentQueryService(db).list_for_day(actor, practitioner_id, day)
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.get('/doctor/{practitioner_id}/week', response_model=list[CalendarCellResponse])
def practitioner_week(
    practitioner_id: int,
    anchor: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        cells = CalendarViewBuilder(db).week_for(actor, anchor, practitioner_id=practitioner_id)
        return [CalendarCellResponse.model_validate(cell) for cell in cells]


@router.get('/doctor/{practitioner_id}/month', response_model=list[CalendarCellResponse])
def practitioner_month(
    practitioner_id: int,
    anchor: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        cells = CalendarViewBuilder(db).month_for(actor, anchor, practitioner_id=practitioner_id)
        return [CalendarCellResponse.model_validate(cell) for cell in cells]


@router.get('/doctor/{practitioner_id}/count', response_model=CountResponse)
def count_practitioner_appointments(
    practitioner_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return CountResponse(count=BookingLedger(db).count_for_practitioner(actor, practitioner_id))


@router.get('/doctor/{practitioner_id}/open-slots', response_model=list[OpenSlotResponse])
def list_open_slots(
    practitioner_id: int,
    start: date | None = Query(default=None),
    days: int = Query(default=14, ge=1, le=config.MAX_OPEN_SLOT_RANGE_DAYS),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        start_date = start or clock().date()
        slots = AvailabilityResolver(db, clock=clock).open_slots(practitioner_id, start_date, days)
        return [OpenSlotResponse.model_validate(slot) for slot in slots]


@router.get('/patient/{requester_id}', response_model=AppointmentPageResponse)
def list_requester_appointments(
    requester_id: int,
    status_filter: str = Query(default='ALL', alias='status'),
    timeframe: str = Query(default='ALL'),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    sort_by: str = Query(default='date'),
    sort_dir: str = Query(default='desc'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        filters = AppointmentFilter.from_params(
            requester_id=requester_id,
            status=status_filter,
            timeframe=timeframe,
        )
        return _list_page(db, actor, clock, filters, page, size, sort_by, sort_dir)


@router.get('/patient/{requester_id}/all', response_model=list[AppointmentResponse])
def list_all_requester_appointments(
    requester_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        appointments = AppointmentQueryService(db).list_all(actor, AppointmentFilter(requester_id=requester_id))
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.get('/patient/{requester_id}/week', response_model=list[CalendarCellResponse])
def requester_week(
    requester_id: int,
    anchor: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        cells = CalendarViewBuilder(db).week_for(actor, anchor, requester_id=requester_id)
        return [CalendarCellResponse.model_validate(cell) for cell in cells]


@router.get('/patient/{requester_id}/month', response_model=list[CalendarCellResponse])
def requester_month(
    requester_id: int,
    anchor: date = Query(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        cells = CalendarViewBuilder(db).month_for(actor, anchor, requester_id=requester_id)
        return [CalendarCellResponse.model_validate(cell) for cell in cells]


@router.get('/patient/{requester_id}/count', response_model=CountResponse)
def count_requester_appointments(
    requester_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return CountResponse(count=BookingLedger(db).count_for_requester(actor, requester_id))


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return AppointmentResponse.model_validate(BookingLedger(db).get(actor, appointment_id))


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        appointment = BookingLedger(db).update_details(actor, appointment_id, reason=data.reason, notes=data.notes)
        return AppointmentResponse.model_validate(appointment)


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    new_status: AppointmentStatus = Query(..., alias='status'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        appointment = BookingLedger(db).transition(actor, appointment_id, new_status)
        return AppointmentResponse.model_validate(appointment)


@router.put('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return AppointmentResponse.model_validate(BookingLedger(db).confirm(actor, appointment_id))


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return AppointmentResponse.model_validate(BookingLedger(db).cancel(actor, appointment_id))


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return AppointmentResponse.model_validate(BookingLedger(db).complete(actor, appointment_id))


@router.put('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        return AppointmentResponse.model_validate(BookingLedger(db).mark_no_show(actor, appointment_id))


@router.put('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with booking_errors(db):
        appointment = BookingLedger(db, clock=clock).reschedule(actor, appointment_id, data.date, data.time)
        return AppointmentResponse.model_validate(appointment)


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with booking_errors(db):
        BookingLedger(db).delete(actor, appointment_id)
