"""Requester model definitions."""

from sqlalchemy import Column, Integer, String
from booking_backend.database import Base


class Requester(Base):
    """Directory entry for someone who books appointments."""
    __tablename__ = "requesters"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False, default='')
