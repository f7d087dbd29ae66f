from __future__ import annotations

from .engine import RejectionReason


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class TicketConflictError(TicketServiceError):
    """Raised when a ticket changed since the snapshot an update was based on."""

    def __init__(self, ticket_id: str, expected_version: int, actual_version: int | None = None) -> None:
        detail = f"Ticket {ticket_id} was modified concurrently (expected version {expected_version}"
        if actual_version is not None:
            detail += f", found {actual_version}"
        super().__init__(detail + ")")
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class TicketTransitionRejected(TicketServiceError):
    """Raised when the lifecycle engine refuses a proposed change."""

    def __init__(self, reason: RejectionReason) -> None:
        super().__init__(reason.message)
        self.reason = reason
