from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from .state import TicketStatus, Urgency


class Role(str, Enum):
    """Roles an actor can hold."""

    USER = "USER"
    IT = "IT"
    ADMIN = "ADMIN"


@dataclass(frozen=True, slots=True)
class Actor:
    """Authorization context of the identity performing an operation."""

    user_id: int
    role: Role
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True, slots=True)
class Ticket:
    """Snapshot of a repair ticket."""

    id: str
    ticket_code: str
    status: TicketStatus
    urgency: Urgency
    title: str
    description: str = ""
    location: str = ""
    category: str = ""
    assignees: frozenset[int] = frozenset()
    notes: str = ""
    message_to_reporter: str = ""
    estimated_completion_date: date | None = None
    reporter_name: str = ""
    reporter_department: str = ""
    reporter_phone: str = ""
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TicketChanges:
    """Partial update proposed for a ticket. ``None`` leaves a field untouched."""

    title: str | None = None
    description: str | None = None
    location: str | None = None
    category: str | None = None
    urgency: Urgency | None = None
    notes: str | None = None
    message_to_reporter: str | None = None
    estimated_completion_date: date | None = None
    assignee_ids: frozenset[int] | None = None
    note: str | None = None


class HistoryAction(str, Enum):
    ASSIGN = "ASSIGN"
    UNASSIGN = "UNASSIGN"
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    STATUS_CHANGE = "STATUS_CHANGE"


@dataclass(frozen=True, slots=True)
class AssignmentHistoryEntry:
    """Append-only record of an assignment or status related action."""

    ticket_id: str
    action: HistoryAction
    assigner: int
    assignee: int | None
    from_status: TicketStatus
    to_status: TicketStatus
    created_at: datetime
    note: str | None = None
    id: int | None = None


class NotificationKind(str, Enum):
    REPORTER = "REPORTER"
    ASSIGNEE = "ASSIGNEE"


@dataclass(frozen=True, slots=True)
class NotificationRequest:
    """Fire-and-forget notification the caller should dispatch after committing."""

    kind: NotificationKind
    ticket_id: str
    ticket_code: str
    message: str
    recipient_id: int | None = None
