"""Repair ticket domain: lifecycle engine, persistence and orchestration."""

from .engine import (
    Accepted,
    MalformedTicketError,
    Rejected,
    RejectionKind,
    RejectionReason,
    TicketLifecycleEngine,
    TransitionResult,
)
from .errors import TicketConflictError, TicketNotFoundError, TicketServiceError, TicketTransitionRejected
from .models import (
    Actor,
    AssignmentHistoryEntry,
    HistoryAction,
    NotificationKind,
    NotificationRequest,
    Role,
    Ticket,
    TicketChanges,
)
from .service import TicketService, TicketUpdate
from .state import TicketStateMachine, TicketStatus, Urgency

__all__ = [
    "Accepted",
    "Actor",
    "AssignmentHistoryEntry",
    "HistoryAction",
    "MalformedTicketError",
    "NotificationKind",
    "NotificationRequest",
    "Rejected",
    "RejectionKind",
    "RejectionReason",
    "Role",
    "Ticket",
    "TicketChanges",
    "TicketConflictError",
    "TicketLifecycleEngine",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketTransitionRejected",
    "TicketUpdate",
    "TransitionResult",
    "Urgency",
]
