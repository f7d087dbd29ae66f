"""SQLModel table definitions for the RepairDesk data layer."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class RepairTicketTable(SQLModel, table=True):
    """Repair tickets; ``version`` guards concurrent updates."""

    __tablename__ = "repair_tickets"

    id: str = Field(primary_key=True, index=True)
    ticket_code: str = Field(sa_column=Column(String(32), nullable=False, unique=True))
    status: str = Field(sa_column=Column(String(32), nullable=False, index=True))
    urgency: str = Field(sa_column=Column(String(16), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    location: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    category: str = Field(default="", sa_column=Column(String(100), nullable=False, default=""))
    notes: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    message_to_reporter: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    estimated_completion_date: Optional[date] = Field(default=None, sa_column=Column(Date, nullable=True))
    reporter_name: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    reporter_department: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    reporter_phone: str = Field(default="", sa_column=Column(String(50), nullable=False, default=""))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class RepairTicketAssigneeTable(SQLModel, table=True):
    """Technicians currently responsible for a ticket."""

    __tablename__ = "repair_ticket_assignees"
    __table_args__ = (UniqueConstraint("ticket_id", "user_id", name="uq_repair_ticket_assignee"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("repair_tickets.id"), nullable=False, index=True)
    )
    user_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))


class AssignmentHistoryTable(SQLModel, table=True):
    """Append-only trail of assignment and status actions."""

    __tablename__ = "repair_assignment_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("repair_tickets.id"), nullable=False, index=True)
    )
    action: str = Field(sa_column=Column(String(32), nullable=False))
    assigner_id: int = Field(sa_column=Column(Integer, nullable=False))
    assignee_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    from_status: str = Field(sa_column=Column(String(32), nullable=False))
    to_status: str = Field(sa_column=Column(String(32), nullable=False))
    note: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
