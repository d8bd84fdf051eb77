from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from booking_backend.models.appointment import AppointmentStatus
from booking_backend.routes import appointment_routes
from booking_backend.routes.appointment_routes import (
    DATABASE_UNAVAILABLE,
    CreateAppointmentRequest,
    RescheduleRequest,
    UpdateAppointmentRequest,
    booking_errors,
    cancel_appointment,
    check_availability,
    complete_appointment,
    confirm_appointment,
    count_practitioner_appointments,
    create_appointment,
    delete_appointment,
    get_appointment,
    list_appointments,
    list_open_slots,
    list_practitioner_appointments,
    list_practitioner_appointments_for_day,
    list_requester_appointments,
    mark_no_show,
    practitioner_month,
    reschedule_appointment,
    update_appointment,
    update_appointment_status,
)

FRIDAY = date(2025, 1, 10)

unpatched_ensure_database_ready = appointment_routes.ensure_database_ready


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.routes.appointment_routes.ensure_database_ready', lambda: None)


def _create(db, actor, clock, slot_time: time = time(9, 0), requester_id: int = 10, **fields):
    request = CreateAppointmentRequest(
        practitioner_id=fields.pop('practitioner_id', 1),
        requester_id=requester_id,
        date=fields.pop('date', FRIDAY),
        time=slot_time,
        **fields,
    )
    return create_appointment(data=request, actor=actor, db=db, clock=clock)


def _list(db, actor, clock, **params):
    arguments = {
        'practitioner_id': None,
        'requester_id': None,
        'status_filter': 'ALL',
        'timeframe': 'ALL',
        'date_from': None,
        'date_to': None,
        'page': 0,
        'size': 10,
        'sort_by': 'date',
        'sort_dir': 'desc',
    }
    arguments.update(params)
    return list_appointments(actor=actor, db=db, clock=clock, **arguments)


def test_create_appointment_request_cleans_text() -> None:
    request = CreateAppointmentRequest(
        practitioner_id=1,
        requester_id=10,
        date=FRIDAY,
        time=time(9, 0),
        reason='  Knee pain  ',
        notes='   ',
    )

    assert request.reason == 'Knee pain'
    assert request.notes is None


def test_create_appointment_request_rejects_long_reason() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(practitioner_id=1, requester_id=10, date=FRIDAY, time=time(9, 0), reason='x' * 501)


def test_create_appointment_returns_pending(directory, requester_actor, clock) -> None:
    response = _create(directory, requester_actor, clock, reason='Check-up')

    assert response.status is AppointmentStatus.PENDING
    assert response.reason == 'Check-up'
    assert response.model_dump(mode='json')['time'] == '09:00'


def test_create_appointment_conflict_is_409(directory, requester_actor, admin, clock) -> None:
    _create(directory, requester_actor, clock)

    with pytest.raises(HTTPException) as exception_info:
        _create(directory, admin, clock, requester_id=11)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'slot already booked'


def test_create_appointment_outside_hours_is_400(directory, requester_actor, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(directory, requester_actor, clock, slot_time=time(8, 0))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'outside opening hours'


def test_create_appointment_for_unknown_practitioner_is_404(directory, admin, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(directory, admin, clock, practitioner_id=404)

    assert exception_info.value.status_code == 404


def test_create_appointment_for_someone_else_is_403(directory, requester_actor, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(directory, requester_actor, clock, requester_id=11)

    assert exception_info.value.status_code == 403


def test_check_availability_reports_reason(directory, requester_actor, clock) -> None:
    _create(directory, requester_actor, clock)

    booked = check_availability(practitioner_id=1, slot_date=FRIDAY, slot_time=time(9, 0), db=directory, clock=clock)
    free = check_availability(practitioner_id=1, slot_date=FRIDAY, slot_time=time(9, 30), db=directory, clock=clock)

    assert (booked.available, booked.reason) == (False, 'slot already booked')
    assert (free.available, free.reason) == (True, 'slot available')


def test_status_lifecycle_endpoints(directory, requester_actor, practitioner_actor, clock) -> None:
    created = _create(directory, requester_actor, clock)

    confirmed = confirm_appointment(appointment_id=created.id, actor=practitioner_actor, db=directory)
    completed = complete_appointment(appointment_id=created.id, actor=practitioner_actor, db=directory)

    assert confirmed.status is AppointmentStatus.CONFIRMED
    assert completed.status is AppointmentStatus.COMPLETED

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id=created.id, actor=practitioner_actor, db=directory)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Cannot change status from COMPLETED to CANCELLED.'


def test_mark_no_show_requires_confirmed(directory, requester_actor, admin, clock) -> None:
    created = _create(directory, requester_actor, clock)

    with pytest.raises(HTTPException) as exception_info:
        mark_no_show(appointment_id=created.id, actor=admin, db=directory)
    assert exception_info.value.status_code == 409

    update_appointment_status(appointment_id=created.id, new_status=AppointmentStatus.CONFIRMED, actor=admin, db=directory)
    assert mark_no_show(appointment_id=created.id, actor=admin, db=directory).status is AppointmentStatus.NO_SHOW


def test_requester_cannot_confirm(directory, requester_actor, clock) -> None:
    created = _create(directory, requester_actor, clock)

    with pytest.raises(HTTPException) as exception_info:
        confirm_appointment(appointment_id=created.id, actor=requester_actor, db=directory)

    assert exception_info.value.status_code == 403


def test_reschedule_conflict_is_409_and_keeps_slot(directory, admin, clock) -> None:
    first = _create(directory, admin, clock, slot_time=time(9, 0))
    _create(directory, admin, clock, slot_time=time(10, 0), requester_id=11)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment_id=first.id,
            data=RescheduleRequest(date=FRIDAY, time=time(10, 0)),
            actor=admin,
            db=directory,
            clock=clock,
        )

    assert exception_info.value.status_code == 409
    assert get_appointment(appointment_id=first.id, actor=admin, db=directory).time == time(9, 0)


def test_reschedule_completed_is_409(directory, admin, clock) -> None:
    created = _create(directory, admin, clock)
    confirm_appointment(appointment_id=created.id, actor=admin, db=directory)
    complete_appointment(appointment_id=created.id, actor=admin, db=directory)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment_id=created.id,
            data=RescheduleRequest(date=FRIDAY, time=time(11, 0)),
            actor=admin,
            db=directory,
            clock=clock,
        )

    assert exception_info.value.status_code == 409


def test_update_appointment_details(directory, requester_actor, clock) -> None:
    created = _create(directory, requester_actor, clock, reason='Old reason')

    updated = update_appointment(
        appointment_id=created.id,
        data=UpdateAppointmentRequest(reason='New reason', notes='Bring scans'),
        actor=requester_actor,
        db=directory,
    )

    assert (updated.reason, updated.notes) == ('New reason', 'Bring scans')


def test_get_missing_appointment_is_404(directory, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=999, actor=admin, db=directory)

    assert exception_info.value.status_code == 404


def test_delete_appointment_requires_admin(directory, requester_actor, admin, clock) -> None:
    created = _create(directory, requester_actor, clock)

    with pytest.raises(HTTPException) as exception_info:
        delete_appointment(appointment_id=created.id, actor=requester_actor, db=directory)
    assert exception_info.value.status_code == 403

    delete_appointment(appointment_id=created.id, actor=admin, db=directory)
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=created.id, actor=admin, db=directory)
    assert exception_info.value.status_code == 404


def test_list_appointments_pages_and_counts(directory, admin, clock) -> None:
    for hour in (9, 10, 11):
        _create(directory, admin, clock, slot_time=time(hour, 0))

    page = _list(directory, admin, clock, size=2, sort_dir='asc')

    assert page.total_elements == 3
    assert page.total_pages == 2
    assert page.first is True
    assert page.last is False
    assert [item.time for item in page.content] == [time(9, 0), time(10, 0)]


def test_list_appointments_status_filter_counts_filtered_set(directory, admin, clock) -> None:
    first = _create(directory, admin, clock, slot_time=time(9, 0))
    _create(directory, admin, clock, slot_time=time(10, 0))
    confirm_appointment(appointment_id=first.id, actor=admin, db=directory)

    page = _list(directory, admin, clock, status_filter='CONFIRMED')

    assert page.total_elements == 1
    assert page.content[0].id == first.id


def test_list_appointments_rejects_bad_status(directory, admin, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _list(directory, admin, clock, status_filter='ARCHIVED')

    assert exception_info.value.status_code == 400


def test_practitioner_listing_rejects_other_calendar(directory, practitioner_actor, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_practitioner_appointments(
            practitioner_id=2,
            status_filter='ALL',
            timeframe='ALL',
            page=0,
            size=10,
            sort_by='date',
            sort_dir='desc',
            actor=practitioner_actor,
            db=directory,
            clock=clock,
        )

    assert exception_info.value.status_code == 403


def test_requester_listing_uses_own_scope(directory, requester_actor, admin, clock) -> None:
    _create(directory, requester_actor, clock)
    _create(directory, admin, clock, slot_time=time(10, 0), requester_id=11)

    page = list_requester_appointments(
        requester_id=10,
        status_filter='ALL',
        timeframe='UPCOMING',
        page=0,
        size=10,
        sort_by='date',
        sort_dir='desc',
        actor=requester_actor,
        db=directory,
        clock=clock,
    )

    assert page.total_elements == 1
    assert page.content[0].requester_id == 10


def test_day_listing_and_count(directory, admin, practitioner_actor, clock) -> None:
    _create(directory, admin, clock, slot_time=time(11, 0))
    _create(directory, admin, clock, slot_time=time(9, 0), requester_id=11)

    day = list_practitioner_appointments_for_day(practitioner_id=1, day=FRIDAY, actor=practitioner_actor, db=directory)
    count = count_practitioner_appointments(practitioner_id=1, actor=practitioner_actor, db=directory)

    assert [item.time for item in day] == [time(9, 0), time(11, 0)]
    assert count.count == 2


def test_month_view_has_42_cells(directory, practitioner_actor, requester_actor, clock) -> None:
    _create(directory, requester_actor, clock)

    cells = practitioner_month(practitioner_id=1, anchor=FRIDAY, actor=practitioner_actor, db=directory)

    assert len(cells) == 42
    friday_cell = next(cell for cell in cells if cell.date == FRIDAY)
    assert friday_cell.in_focus is True
    assert len(friday_cell.appointments) == 1


def test_open_slots_default_to_today(directory, clock) -> None:
    slots = list_open_slots(practitioner_id=1, start=None, days=2, db=directory, clock=clock)

    assert slots[0].date == date(2025, 1, 6)
    assert slots[0].model_dump(mode='json')['end_time'] == '09:30'


def test_booking_errors_maps_storage_failures_to_503(directory) -> None:
    with pytest.raises(HTTPException) as exception_info:
        with booking_errors(directory):
            raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == DATABASE_UNAVAILABLE


def test_ensure_database_ready_maps_schema_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_schema() -> None:
        raise OperationalError('ALTER TABLE', {}, Exception('database is down'))

    monkeypatch.setattr(appointment_routes, 'ensure_appointment_schema', broken_schema)

    with pytest.raises(HTTPException) as exception_info:
        unpatched_ensure_database_ready()

    assert exception_info.value.status_code == 503
