from __future__ import annotations

from enum import Enum
from typing import Mapping


class TicketStatus(str, Enum):
    """Supported states for a repair ticket's lifecycle."""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_PARTS = "WAITING_PARTS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Urgency(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


TERMINAL_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.COMPLETED, TicketStatus.CANCELLED})


class TicketStateMachine:
    """Validate repair ticket lifecycle transitions."""

    _TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.PENDING: frozenset(
            {TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED}
        ),
        TicketStatus.ASSIGNED: frozenset(
            {TicketStatus.IN_PROGRESS, TicketStatus.PENDING, TicketStatus.CANCELLED}
        ),
        TicketStatus.IN_PROGRESS: frozenset(
            {TicketStatus.WAITING_PARTS, TicketStatus.COMPLETED, TicketStatus.CANCELLED}
        ),
        TicketStatus.WAITING_PARTS: frozenset(
            {TicketStatus.IN_PROGRESS, TicketStatus.COMPLETED, TicketStatus.CANCELLED}
        ),
        TicketStatus.COMPLETED: frozenset(),
        TicketStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in TERMINAL_STATUSES

    @classmethod
    def allowed_targets(cls, current: TicketStatus) -> frozenset[TicketStatus]:
        return cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        # A status never transitions to itself; re-submitting is not a no-op.
        return new in cls.allowed_targets(current)

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise ValueError(f"Invalid ticket status transition: {current.value} -> {new.value}")
