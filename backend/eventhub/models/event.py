"""
Event model with slot capacity tracking.

Key design decisions:
- `registered_slots` is denormalized (avoids COUNT over registrations) and is
  the durable source of truth for the slot cache
- CHECK constraints keep 0 <= registered_slots <= max_slots at the DB level
- Index on `schedule` for upcoming-event listings
"""

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from eventhub.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    venue = Column(String(255), nullable=True)
    schedule = Column(DateTime(timezone=True), nullable=True)
    code = Column(String(64), nullable=True)
    max_slots = Column(Integer, nullable=False, default=0)
    registered_slots = Column(Integer, nullable=False, default=0)

    registrations = relationship(
        "Registration",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("max_slots >= 0", name="check_max_slots_non_negative"),
        CheckConstraint("registered_slots >= 0", name="check_registered_slots_non_negative"),
        CheckConstraint("registered_slots <= max_slots", name="check_registered_lte_max"),
        Index("ix_events_schedule", "schedule"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, slots={self.registered_slots}/{self.max_slots})>"
