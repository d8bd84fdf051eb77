"""Role-scoped, filtered, sorted and paginated appointment listing.

Filters are predicate objects applied to the SQL query so that counts and
pages are computed over the same filtered set. ``Page.refilter`` covers the
remaining case where a filter is applied to a page that was already fetched.
"""

import enum
import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Generic, TypeVar

from sqlalchemy.orm import Query, Session

from booking_backend.core import config
from booking_backend.core.actor import Actor, ActorRole
from booking_backend.core.errors import BookingValidationError, PermissionDeniedError
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.models.practitioner import Practitioner
from booking_backend.models.requester import Requester

T = TypeVar('T')

STATUS_ALL = 'ALL'


class Timeframe(str, enum.Enum):
    UPCOMING = 'UPCOMING'
    PAST = 'PAST'
    ALL = 'ALL'


class SortDirection(str, enum.Enum):
    ASC = 'asc'
    DESC = 'desc'

    def flipped(self) -> 'SortDirection':
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


SORT_FIELDS = ('date', 'status', 'created_at', 'practitioner_name', 'requester_name')
DEFAULT_SORT_FIELD = 'date'


@dataclass(frozen=True)
class SortState:
    """Sort column plus direction, toggled the way table headers behave."""

    field: str = DEFAULT_SORT_FIELD
    direction: SortDirection = SortDirection.DESC

    def toggle(self, requested_field: str) -> 'SortState':
        if requested_field == self.field:
            return SortState(self.field, self.direction.flipped())
        return SortState(requested_field, SortDirection.ASC)


@dataclass(frozen=True)
class AppointmentFilter:
    practitioner_id: int | None = None
    requester_id: int | None = None
    status: AppointmentStatus | None = None
    timeframe: Timeframe = Timeframe.ALL
    date_from: date | None = None
    date_to: date | None = None

    @classmethod
    def from_params(
        cls,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
        status: str | None = STATUS_ALL,
        timeframe: str | None = Timeframe.ALL.value,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> 'AppointmentFilter':
        try:
            parsed_status = None if not status or status.upper() == STATUS_ALL else AppointmentStatus(status.upper())
            parsed_timeframe = Timeframe((timeframe or Timeframe.ALL.value).upper())
        except ValueError as exc:
            raise BookingValidationError(str(exc)) from exc
        if date_from and date_to and date_from > date_to:
            raise BookingValidationError('date_from must be on or before date_to.')
        return cls(
            practitioner_id=practitioner_id,
            requester_id=requester_id,
            status=parsed_status,
            timeframe=parsed_timeframe,
            date_from=date_from,
            date_to=date_to,
        )

    def apply(self, query: Query, today: date) -> Query:
        if self.practitioner_id is not None:
            query = query.filter(Appointment.practitioner_id == self.practitioner_id)
        if self.requester_id is not None:
            query = query.filter(Appointment.requester_id == self.requester_id)
        if self.status is not None:
            query = query.filter(Appointment.status == self.status)
        # Upcoming is by calendar day: anything today counts, whatever the hour.
        if self.timeframe is Timeframe.UPCOMING:
            query = query.filter(Appointment.date >= today)
        elif self.timeframe is Timeframe.PAST:
            query = query.filter(Appointment.date < today)
        if self.date_from is not None:
            query = query.filter(Appointment.date >= self.date_from)
        if self.date_to is not None:
            query = query.filter(Appointment.date <= self.date_to)
        return query

    def matches(self, appointment, today: date) -> bool:
        """Same predicate as ``apply``, evaluated in memory."""
        if self.practitioner_id is not None and appointment.practitioner_id != self.practitioner_id:
            return False
        if self.requester_id is not None and appointment.requester_id != self.requester_id:
            return False
        if self.status is not None and appointment.status != self.status:
            return False
        if self.timeframe is Timeframe.UPCOMING and appointment.date < today:
            return False
        if self.timeframe is Timeframe.PAST and appointment.date >= today:
            return False
        if self.date_from is not None and appointment.date < self.date_from:
            return False
        if self.date_to is not None and appointment.date > self.date_to:
            return False
        return True


@dataclass(frozen=True)
class Page(Generic[T]):
    content: list[T]
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total_elements / self.size)

    @property
    def first(self) -> bool:
        return self.page == 0

    @property
    def last(self) -> bool:
        return self.page + 1 >= self.total_pages

    def refilter(self, predicate: Callable[[T], bool]) -> 'Page[T]':
        """Filter an already-fetched page and re-derive its totals.

        The incoming page metadata describes the unfiltered set and is
        discarded. The survivors become page 0 of a single-page result.
        """
        content = [item for item in self.content if predicate(item)]
        return Page(content=content, page=0, size=self.size, total_elements=len(content))


def parse_sort_direction(value: SortDirection | str) -> SortDirection:
    try:
        return SortDirection(value.lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise BookingValidationError('sort_dir must be asc or desc.') from exc


def validate_page_request(page: int, size: int) -> None:
    if page < 0:
        raise BookingValidationError('page must be zero or greater.')
    if size < 1 or size > config.MAX_PAGE_SIZE:
        raise BookingValidationError(f'size must be between 1 and {config.MAX_PAGE_SIZE}.')


class AppointmentQueryService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    @staticmethod
    def scope_filter(actor: Actor, filters: AppointmentFilter) -> AppointmentFilter:
        """Restrict filters to what the actor is allowed to see.

        Administrators see every appointment unless they pick a practitioner.
        """
        if actor.role is ActorRole.PRACTITIONER:
            if filters.practitioner_id not in (None, actor.actor_id):
                raise PermissionDeniedError('Practitioners can only list their own appointments.')
            return replace(filters, practitioner_id=actor.actor_id)
        if actor.role is ActorRole.REQUESTER:
            if filters.requester_id not in (None, actor.actor_id):
                raise PermissionDeniedError('Requesters can only list their own appointments.')
            return replace(filters, requester_id=actor.actor_id)
        return filters

    def _order(self, query: Query, sort_by: str, sort_dir: SortDirection) -> Query:
        if sort_by not in SORT_FIELDS:
            raise BookingValidationError(f'Cannot sort by {sort_by}. Choose one of: {", ".join(SORT_FIELDS)}.')

        if sort_by == 'date':
            columns = [Appointment.date, Appointment.time]
        elif sort_by == 'status':
            columns = [Appointment.status, Appointment.date, Appointment.time]
        elif sort_by == 'created_at':
            columns = [Appointment.created_at]
        elif sort_by == 'practitioner_name':
            query = query.join(Practitioner, Practitioner.id == Appointment.practitioner_id)
            columns = [Practitioner.full_name, Appointment.date, Appointment.time]
        else:
            query = query.join(Requester, Requester.id == Appointment.requester_id)
            columns = [Requester.full_name, Appointment.date, Appointment.time]

        ordered = [column.desc() if sort_dir is SortDirection.DESC else column.asc() for column in columns]
        ordered.append(Appointment.id.desc() if sort_dir is SortDirection.DESC else Appointment.id.asc())
        return query.order_by(*ordered)

    def _filtered(self, actor: Actor, filters: AppointmentFilter) -> Query:
        scoped = self.scope_filter(actor, filters)
        return scoped.apply(self.db.query(Appointment), self.clock().date())

    def list_appointments(
        self,
        actor: Actor,
        filters: AppointmentFilter,
        page: int = 0,
        size: int = config.DEFAULT_PAGE_SIZE,
        sort_by: str = DEFAULT_SORT_FIELD,
        sort_dir: SortDirection | str = SortDirection.DESC,
    ) -> Page[Appointment]:
        validate_page_request(page, size)
        sort_dir = parse_sort_direction(sort_dir)

        query = self._filtered(actor, filters)
        total_elements = query.count()
        content = self._order(query, sort_by, sort_dir).offset(page * size).limit(size).all()
        return Page(content=content, page=page, size=size, total_elements=total_elements)

    def list_all(
        self,
        actor: Actor,
        filters: AppointmentFilter,
        sort_by: str = DEFAULT_SORT_FIELD,
        sort_dir: SortDirection | str = SortDirection.DESC,
    ) -> list[Appointment]:
        return self._order(self._filtered(actor, filters), sort_by, parse_sort_direction(sort_dir)).all()

    def narrow_page(self, page: Page[Appointment], filters: AppointmentFilter) -> Page[Appointment]:
        """Apply filters to a page that was fetched without them."""
        today = self.clock().date()
        return page.refilter(lambda appointment: filters.matches(appointment, today))

    def list_for_day(self, actor: Actor, practitioner_id: int, day: date) -> list[Appointment]:
        filters = AppointmentFilter(practitioner_id=practitioner_id, date_from=day, date_to=day)
        return self.list_all(actor, filters, sort_dir=SortDirection.ASC)
