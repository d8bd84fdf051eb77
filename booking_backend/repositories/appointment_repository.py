"""Appointment repository - database reads shared by the booking services"""

from datetime import date, time
from typing import Optional

from sqlalchemy.orm import Session

from booking_backend.models.appointment import SLOT_HOLDING_STATUSES, Appointment


class AppointmentRepository:
    """Repository for appointment lookups"""

    @staticmethod
    def get_by_id(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def find_slot_holder(
        db: Session,
        practitioner_id: int,
        slot_date: date,
        slot_time: time,
        exclude_id: int | None = None,
    ) -> Optional[Appointment]:
        """Return the booking that currently holds the slot, if any"""
        query = db.query(Appointment).filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.date == slot_date,
            Appointment.time == slot_time,
            Appointment.status.in_(SLOT_HOLDING_STATUSES),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    @staticmethod
    def booked_slots(db: Session, practitioner_id: int, start_date: date, end_date: date) -> set[tuple[date, time]]:
        """(date, time) pairs held between start_date and end_date inclusive"""
        rows = db.query(Appointment.date, Appointment.time).filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.date >= start_date,
            Appointment.date <= end_date,
            Appointment.status.in_(SLOT_HOLDING_STATUSES),
        ).all()
        return {(row_date, row_time) for row_date, row_time in rows}

    @staticmethod
    def list_between(
        db: Session,
        start_date: date,
        end_date: date,
        practitioner_id: int | None = None,
        requester_id: int | None = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.date >= start_date,
            Appointment.date <= end_date,
        )
        if practitioner_id is not None:
            query = query.filter(Appointment.practitioner_id == practitioner_id)
        if requester_id is not None:
            query = query.filter(Appointment.requester_id == requester_id)
        return query.order_by(Appointment.date.asc(), Appointment.time.asc(), Appointment.id.asc()).all()

    @staticmethod
    def count_for_practitioner(db: Session, practitioner_id: int) -> int:
        return db.query(Appointment).filter(Appointment.practitioner_id == practitioner_id).count()

    @staticmethod
    def count_for_requester(db: Session, requester_id: int) -> int:
        return db.query(Appointment).filter(Appointment.requester_id == requester_id).count()
