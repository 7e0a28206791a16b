"""SQLModel table definitions for the queue data layer."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class DepartmentTable(SQLModel, table=True):
    """Departments maintained by the administration module."""

    __tablename__ = "departments"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    prefix: str = Field(sa_column=Column(String(16), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ServiceTable(SQLModel, table=True):
    """Services offered by a single department."""

    __tablename__ = "services"

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(
        sa_column=Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))


class CounterTable(SQLModel, table=True):
    """Service points that call tickets for one department."""

    __tablename__ = "counters"

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(
        sa_column=Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))


class DepartmentSequenceTable(SQLModel, table=True):
    """Last issued ticket number per department."""

    __tablename__ = "department_sequences"

    department_id: int = Field(
        sa_column=Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), primary_key=True)
    )
    last_number: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Queue tickets issued to citizens."""

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("department_id", "number", name="uq_tickets_department_number"),
        Index("ix_tickets_department_lane_status", "department_id", "lane", "status", "created_at"),
        Index(
            "uq_tickets_serving_counter",
            "counter_id",
            unique=True,
            postgresql_where=text("status = 'serving'"),
            sqlite_where=text("status = 'serving'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    department_id: int = Field(sa_column=Column(Integer, ForeignKey("departments.id"), nullable=False))
    service_id: int | None = Field(default=None, sa_column=Column(Integer, ForeignKey("services.id"), nullable=True))
    number: int = Field(sa_column=Column(Integer, nullable=False))
    lane: str = Field(sa_column=Column(String(20), nullable=False))
    priority: str = Field(sa_column=Column(String(50), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    counter_id: int | None = Field(default=None, sa_column=Column(Integer, ForeignKey("counters.id"), nullable=True))
    staff_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    repeat_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default=text("0")))
    idempotency_key: str | None = Field(default=None, sa_column=Column(String(128), nullable=True, unique=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    called_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class TicketEventTable(SQLModel, table=True):
    """Outbox of ticket state changes consumed by displays and announcers."""

    __tablename__ = "ticket_events"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: int = Field(
        sa_column=Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    department_id: int = Field(sa_column=Column(Integer, nullable=False))
    lane: str = Field(sa_column=Column(String(20), nullable=False))
    label: str = Field(sa_column=Column(String(64), nullable=False))
    action: str = Field(sa_column=Column(String(32), nullable=False))
    old_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    new_status: str = Field(sa_column=Column(String(20), nullable=False))
    counter_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    repeat_count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    actor: str = Field(sa_column=Column(String(255), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class OutboxSequenceTable(SQLModel, table=True):
    """Last event id handed out per outbox.

    Writers hold this row locked until commit, so outbox ids follow commit order.
    """

    __tablename__ = "outbox_sequences"

    name: str = Field(sa_column=Column(String(64), primary_key=True))
    last_id: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
