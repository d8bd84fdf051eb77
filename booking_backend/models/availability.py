"""Weekly availability model definitions."""

import enum
from datetime import date, time

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, Time
from sqlalchemy.orm import relationship
from booking_backend.database import Base


class DayOfWeek(str, enum.Enum):
    MONDAY = 'MONDAY'
    TUESDAY = 'TUESDAY'
    WEDNESDAY = 'WEDNESDAY'
    THURSDAY = 'THURSDAY'
    FRIDAY = 'FRIDAY'
    SATURDAY = 'SATURDAY'
    SUNDAY = 'SUNDAY'

    @classmethod
    def for_date(cls, value: date) -> 'DayOfWeek':
        return list(cls)[value.weekday()]


class ScheduleWindow(Base):
    """A recurring weekly opening window of a practitioner."""
    __tablename__ = "schedule_windows"

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False, index=True)
    day_of_week = Column(Enum(DayOfWeek, native_enum=False, length=10), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)

    practitioner = relationship("Practitioner", back_populates="weekly_schedule")

    def covers(self, day: DayOfWeek, slot_time: time) -> bool:
        return bool(self.is_open) and self.day_of_week == day and self.start_time <= slot_time < self.end_time
