"""Practitioner model definitions."""

from datetime import date, time

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from booking_backend.database import Base
from booking_backend.models.availability import DayOfWeek, ScheduleWindow


class Practitioner(Base):
    """Directory entry for a practitioner who can be booked."""
    __tablename__ = "practitioners"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False, default='')

    weekly_schedule = relationship(
        "ScheduleWindow",
        back_populates="practitioner",
        cascade="all, delete-orphan",
        order_by=ScheduleWindow.id,
    )

    def window_covering(self, slot_date: date, slot_time: time) -> ScheduleWindow | None:
        day = DayOfWeek.for_date(slot_date)
        for window in self.weekly_schedule:
            if window.covers(day, slot_time):
                return window
        return None
