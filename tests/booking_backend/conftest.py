import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')

from booking_backend.core.actor import Actor, ActorRole  # noqa: E402
from booking_backend.database import Base  # noqa: E402
from booking_backend.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from booking_backend.models.availability import DayOfWeek, ScheduleWindow  # noqa: E402
from booking_backend.models.practitioner import Practitioner  # noqa: E402
from booking_backend.models.requester import Requester  # noqa: E402

# Sunday 2025-01-05, early morning.
FIXED_NOW = datetime(2025, 1, 5, 8, 0)

PRACTITIONER_ID = 1
OTHER_PRACTITIONER_ID = 2
REQUESTER_ID = 10
OTHER_REQUESTER_ID = 11
ADMIN_ID = 99


def fixed_clock() -> datetime:
    return FIXED_NOW


def weekday_schedule(start: time = time(9, 0), end: time = time(17, 0)) -> list[ScheduleWindow]:
    return [
        ScheduleWindow(day_of_week=day, start_time=start, end_time=end, is_open=True)
        for day in list(DayOfWeek)[:5]
    ]


def _add_appointment(
    db,
    slot_date: date,
    slot_time: time,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    practitioner_id: int = PRACTITIONER_ID,
    requester_id: int = REQUESTER_ID,
) -> Appointment:
    appointment = Appointment(
        practitioner_id=practitioner_id,
        requester_id=requester_id,
        date=slot_date,
        time=slot_time,
        status=status,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def directory(db):
    db.add_all(
        [
            Practitioner(id=PRACTITIONER_ID, full_name='Ada Byron', weekly_schedule=weekday_schedule()),
            Practitioner(id=OTHER_PRACTITIONER_ID, full_name='Zed Young', weekly_schedule=weekday_schedule()),
            Requester(id=REQUESTER_ID, full_name='Maria Lopez'),
            Requester(id=OTHER_REQUESTER_ID, full_name='Bo Chen'),
        ]
    )
    db.commit()
    return db


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def make_appointment(db):
    def _make(slot_date: date, slot_time: time, **kwargs) -> Appointment:
        return _add_appointment(db, slot_date, slot_time, **kwargs)

    return _make


@pytest.fixture
def admin() -> Actor:
    return Actor(role=ActorRole.ADMIN, actor_id=ADMIN_ID)


@pytest.fixture
def practitioner_actor() -> Actor:
    return Actor(role=ActorRole.PRACTITIONER, actor_id=PRACTITIONER_ID)


@pytest.fixture
def requester_actor() -> Actor:
    return Actor(role=ActorRole.REQUESTER, actor_id=REQUESTER_ID)
