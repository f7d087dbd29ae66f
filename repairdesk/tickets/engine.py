"""Repair ticket lifecycle engine.

The engine is the single authority on which changes a ticket may undergo. It is a
pure decision function: it receives a ticket snapshot, the acting identity and a
proposed change, and returns either the resulting ticket (together with the
history entries to append and the notifications to send) or a typed rejection.
Persistence, notification delivery and concurrency control belong to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Iterable, Union

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
from .state import TicketStateMachine, TicketStatus, Urgency

# Plain ticket fields a change may overwrite; assignees and status are handled separately.
_EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "location",
    "category",
    "urgency",
    "notes",
    "message_to_reporter",
    "estimated_completion_date",
)

_WORKING_STATUSES = frozenset({TicketStatus.IN_PROGRESS, TicketStatus.WAITING_PARTS})
_STAFFED_STATUSES = frozenset({TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS})


class MalformedTicketError(ValueError):
    """Raised when the engine receives a ticket snapshot it cannot reason about."""


class RejectionKind(str, Enum):
    ILLEGAL_TRANSITION = "illegal_transition"
    PRECONDITION_FAILED = "precondition_failed"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True, slots=True)
class RejectionReason:
    """Why a proposed change was refused."""

    kind: RejectionKind
    message: str
    invariant: str | None = None

    @classmethod
    def illegal_transition(cls, message: str) -> "RejectionReason":
        return cls(kind=RejectionKind.ILLEGAL_TRANSITION, message=message)

    @classmethod
    def precondition_failed(cls, invariant: str, message: str) -> "RejectionReason":
        return cls(kind=RejectionKind.PRECONDITION_FAILED, message=message, invariant=invariant)

    @classmethod
    def unauthorized(cls, message: str) -> "RejectionReason":
        return cls(kind=RejectionKind.UNAUTHORIZED, message=message)


@dataclass(frozen=True, slots=True)
class Accepted:
    """An accepted change: the new ticket plus its side effects."""

    ticket: Ticket
    history: tuple[AssignmentHistoryEntry, ...] = ()
    notifications: tuple[NotificationRequest, ...] = ()

    accepted: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: RejectionReason

    accepted: ClassVar[bool] = False


TransitionResult = Union[Accepted, Rejected]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_ticket(ticket: Ticket) -> None:
    """Raise :class:`MalformedTicketError` when ``ticket`` is not a usable snapshot."""

    if not isinstance(ticket, Ticket):
        raise MalformedTicketError(f"Expected a Ticket, got {type(ticket).__name__}")
    if not ticket.id:
        raise MalformedTicketError("Ticket is missing its identifier")
    if not ticket.ticket_code:
        raise MalformedTicketError(f"Ticket {ticket.id} is missing its ticket code")
    if not isinstance(ticket.status, TicketStatus):
        raise MalformedTicketError(f"Ticket {ticket.id} has unknown status {ticket.status!r}")
    if not isinstance(ticket.urgency, Urgency):
        raise MalformedTicketError(f"Ticket {ticket.id} has unknown urgency {ticket.urgency!r}")
    if not isinstance(ticket.assignees, frozenset) or not all(
        isinstance(user_id, int) for user_id in ticket.assignees
    ):
        raise MalformedTicketError(f"Ticket {ticket.id} has an invalid assignee set")
    if ticket.notes is None or ticket.message_to_reporter is None:
        raise MalformedTicketError(f"Ticket {ticket.id} is missing its free-text fields")


class TicketLifecycleEngine:
    """Decide whether a proposed ticket change is legal and compute its outcome."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        state_machine: type[TicketStateMachine] = TicketStateMachine,
    ) -> None:
        self._clock = clock or _utcnow
        self._state_machine = state_machine

    # ------------------------------------------------------------------
    # public operations

    def propose_transition(
        self,
        ticket: Ticket,
        actor: Actor,
        target_status: TicketStatus | None = None,
        changes: TicketChanges | None = None,
    ) -> TransitionResult:
        """Validate and apply a status change, field changes, or both.

        ``target_status=None`` requests a field-only edit. While the ticket is
        ``PENDING`` a change of assignees derives the target status: the actor
        assigning only themself moves the ticket to ``IN_PROGRESS``, any other
        non-empty set moves it to ``ASSIGNED``. Returning an ``ASSIGNED``
        ticket to ``PENDING`` releases every assignee.
        """

        validate_ticket(ticket)
        _validate_actor(actor)
        return self._propose(ticket, actor, target_status, changes or TicketChanges())

    def _propose(
        self,
        ticket: Ticket,
        actor: Actor,
        target_status: TicketStatus | None,
        changes: TicketChanges,
        response: HistoryAction | None = None,
    ) -> TransitionResult:
        current = ticket.status

        if self._state_machine.is_terminal(current):
            return _reject_illegal(f"Ticket {ticket.ticket_code} is {current.value} and can no longer change")

        if changes.assignee_ids is None:
            new_assignees = ticket.assignees
        else:
            new_assignees = frozenset(int(user_id) for user_id in changes.assignee_ids)
        assignees_changed = new_assignees != ticket.assignees

        denial = self._authorize(ticket, actor, target_status, assignees_changed)
        if denial is not None:
            return Rejected(denial)

        if target_status in _STAFFED_STATUSES and not new_assignees:
            return Rejected(_missing_assignees(target_status))

        returning_to_pool = current == TicketStatus.ASSIGNED and target_status == TicketStatus.PENDING
        derived = False
        if assignees_changed:
            if current == TicketStatus.PENDING:
                computed = self.derive_assignment_status(actor, new_assignees)
                if target_status is not None and target_status != computed:
                    return _reject_illegal(
                        f"Assigning {_format_ids(new_assignees)} moves the ticket to {computed.value}, "
                        f"not {target_status.value}"
                    )
                if computed != current:
                    target_status = computed
                    derived = True
            elif not returning_to_pool:
                return _reject_illegal(f"Assignees can only be changed while a ticket is {TicketStatus.PENDING.value}")
        if returning_to_pool and new_assignees and changes.assignee_ids is not None:
            return _reject_illegal(f"A ticket returned to {TicketStatus.PENDING.value} keeps no assignees")

        if target_status is not None and not derived:
            if target_status == current:
                return _reject_illegal(f"Ticket {ticket.ticket_code} is already {current.value}")
            if not self._state_machine.can_transition(current, target_status):
                return _reject_illegal(f"Cannot move a ticket from {current.value} to {target_status.value}")

        status_action = self._status_action(ticket, actor, target_status, response)
        if status_action is HistoryAction.REJECT and not (changes.note or "").strip():
            return Rejected(RejectionReason.precondition_failed("reason", "A reason is required to reject a job"))

        if returning_to_pool:
            # Back to the pool: every assignee is released.
            new_assignees = frozenset()

        updates: dict[str, object] = {}
        for name in _EDITABLE_FIELDS:
            value = getattr(changes, name)
            if value is not None and value != getattr(ticket, name):
                updates[name] = value
        if new_assignees != ticket.assignees:
            updates["assignees"] = new_assignees
        if target_status is not None:
            updates["status"] = target_status
        if not updates:
            return _reject_illegal(f"Nothing to change on ticket {ticket.ticket_code}")

        now = self._clock()
        updated = replace(ticket, updated_at=now, **updates)

        failure = self._check_preconditions(updated)
        if failure is not None:
            return Rejected(failure)

        history = self._build_history(
            ticket,
            updated,
            actor,
            status_action=None if derived else status_action,
            note=changes.note,
            now=now,
        )
        notifications = self._build_notifications(ticket, updated, actor)
        return Accepted(ticket=updated, history=tuple(history), notifications=tuple(notifications))

    def accept_job(self, ticket: Ticket, actor: Actor) -> TransitionResult:
        """An assignee accepts an ``ASSIGNED`` ticket, moving it to ``IN_PROGRESS``."""

        denial = self._check_job_response(ticket, actor)
        if denial is not None:
            return Rejected(denial)
        return self._propose(
            ticket,
            actor,
            TicketStatus.IN_PROGRESS,
            TicketChanges(),
            response=HistoryAction.ACCEPT,
        )

    def reject_job(self, ticket: Ticket, actor: Actor, reason: str | None) -> TransitionResult:
        """An assignee declines an ``ASSIGNED`` ticket and returns it to the pool."""

        denial = self._check_job_response(ticket, actor)
        if denial is not None:
            return Rejected(denial)
        reason = (reason or "").strip()
        if not reason:
            return Rejected(RejectionReason.precondition_failed("reason", "A reason is required to reject a job"))

        who = actor.name or f"user {actor.user_id}"
        line = f"[Rejected by {who}]: {reason}"
        notes = f"{ticket.notes}\n{line}" if ticket.notes else line
        return self._propose(
            ticket,
            actor,
            TicketStatus.PENDING,
            TicketChanges(notes=notes, note=reason),
            response=HistoryAction.REJECT,
        )

    def assign(self, ticket: Ticket, actor: Actor, assignee_ids: Iterable[int]) -> TransitionResult:
        """Set the assignees of a ``PENDING`` ticket; administrators only."""

        validate_ticket(ticket)
        _validate_actor(actor)
        if self._state_machine.is_terminal(ticket.status):
            return _reject_illegal(
                f"Ticket {ticket.ticket_code} is {ticket.status.value} and can no longer change"
            )
        if not actor.is_admin:
            return Rejected(RejectionReason.unauthorized("Only administrators can assign technicians"))
        if ticket.status != TicketStatus.PENDING:
            return _reject_illegal(
                f"Technicians can only be assigned while a ticket is {TicketStatus.PENDING.value}"
            )
        return self.propose_transition(
            ticket,
            actor,
            changes=TicketChanges(assignee_ids=frozenset(assignee_ids)),
        )

    @staticmethod
    def derive_assignment_status(actor: Actor, assignees: frozenset[int]) -> TicketStatus:
        """Status a ``PENDING`` ticket takes when ``actor`` sets ``assignees``."""

        if not assignees:
            return TicketStatus.PENDING
        if assignees == frozenset({actor.user_id}):
            return TicketStatus.IN_PROGRESS
        return TicketStatus.ASSIGNED

    # ------------------------------------------------------------------
    # rules

    def _check_job_response(self, ticket: Ticket, actor: Actor) -> RejectionReason | None:
        validate_ticket(ticket)
        _validate_actor(actor)
        if self._state_machine.is_terminal(ticket.status):
            return RejectionReason.illegal_transition(
                f"Ticket {ticket.ticket_code} is {ticket.status.value} and can no longer change"
            )
        if actor.user_id not in ticket.assignees:
            return RejectionReason.unauthorized("Only an assigned technician can respond to this job")
        if ticket.status != TicketStatus.ASSIGNED:
            return RejectionReason.illegal_transition(
                f"Only {TicketStatus.ASSIGNED.value} jobs can be accepted or rejected, "
                f"ticket {ticket.ticket_code} is {ticket.status.value}"
            )
        return None

    def _authorize(
        self,
        ticket: Ticket,
        actor: Actor,
        target_status: TicketStatus | None,
        assignees_changed: bool,
    ) -> RejectionReason | None:
        if actor.role == Role.ADMIN:
            return None
        if actor.role != Role.IT:
            return RejectionReason.unauthorized("Reporters cannot modify repair tickets")
        if actor.user_id not in ticket.assignees:
            return RejectionReason.unauthorized("Only technicians assigned to this ticket can modify it")
        if assignees_changed:
            return RejectionReason.unauthorized("Only administrators can change assignees")

        current = ticket.status
        if current == TicketStatus.ASSIGNED and target_status in (TicketStatus.IN_PROGRESS, TicketStatus.PENDING):
            return None
        if current in _WORKING_STATUSES:
            return None
        return RejectionReason.unauthorized("Accept the job before working on it")

    @staticmethod
    def _status_action(
        ticket: Ticket,
        actor: Actor,
        target_status: TicketStatus | None,
        response: HistoryAction | None,
    ) -> HistoryAction | None:
        if target_status is None:
            return None
        if response is not None:
            return response
        # Administrators answer jobs only through accept_job and reject_job.
        if not actor.is_admin and ticket.status == TicketStatus.ASSIGNED and actor.user_id in ticket.assignees:
            if target_status == TicketStatus.IN_PROGRESS:
                return HistoryAction.ACCEPT
            if target_status == TicketStatus.PENDING:
                return HistoryAction.REJECT
        return HistoryAction.STATUS_CHANGE

    @staticmethod
    def _check_preconditions(ticket: Ticket) -> RejectionReason | None:
        if ticket.status in _STAFFED_STATUSES and not ticket.assignees:
            return _missing_assignees(ticket.status)
        if ticket.status == TicketStatus.COMPLETED and not ticket.notes.strip():
            return RejectionReason.precondition_failed(
                "notes", "Closing notes are required to complete a ticket"
            )
        return None

    @staticmethod
    def _build_history(
        before: Ticket,
        after: Ticket,
        actor: Actor,
        *,
        status_action: HistoryAction | None,
        note: str | None,
        now: datetime,
    ) -> list[AssignmentHistoryEntry]:
        def entry(action: HistoryAction, assignee: int | None, entry_note: str | None = None) -> AssignmentHistoryEntry:
            return AssignmentHistoryEntry(
                ticket_id=before.id,
                action=action,
                assigner=actor.user_id,
                assignee=assignee,
                from_status=before.status,
                to_status=after.status,
                created_at=now,
                note=entry_note,
            )

        entries = [entry(HistoryAction.ASSIGN, user_id) for user_id in sorted(after.assignees - before.assignees)]
        for user_id in sorted(before.assignees - after.assignees):
            if status_action is HistoryAction.REJECT and user_id == actor.user_id:
                continue
            entries.append(entry(HistoryAction.UNASSIGN, user_id))

        if status_action is not None:
            assignee = actor.user_id if status_action in (HistoryAction.ACCEPT, HistoryAction.REJECT) else None
            entries.append(entry(status_action, assignee, (note or "").strip() or None))
        return entries

    @staticmethod
    def _build_notifications(before: Ticket, after: Ticket, actor: Actor) -> list[NotificationRequest]:
        requests: list[NotificationRequest] = []
        if after.message_to_reporter != before.message_to_reporter and after.message_to_reporter.strip():
            requests.append(
                NotificationRequest(
                    kind=NotificationKind.REPORTER,
                    ticket_id=after.id,
                    ticket_code=after.ticket_code,
                    message=after.message_to_reporter,
                )
            )
        for user_id in sorted(after.assignees - before.assignees - {actor.user_id}):
            requests.append(
                NotificationRequest(
                    kind=NotificationKind.ASSIGNEE,
                    ticket_id=after.id,
                    ticket_code=after.ticket_code,
                    message=f"Repair ticket {after.ticket_code} has been assigned to you",
                    recipient_id=user_id,
                )
            )
        return requests


def _validate_actor(actor: Actor) -> None:
    if not isinstance(actor, Actor) or not isinstance(actor.role, Role):
        raise TypeError("An Actor with a known role is required")


def _reject_illegal(message: str) -> Rejected:
    return Rejected(RejectionReason.illegal_transition(message))


def _missing_assignees(status: TicketStatus) -> RejectionReason:
    return RejectionReason.precondition_failed(
        "assignees", f"A ticket must have at least one assignee to be {status.value}"
    )


def _format_ids(user_ids: frozenset[int]) -> str:
    return "[" + ", ".join(str(user_id) for user_id in sorted(user_ids)) + "]"


__all__ = [
    "Accepted",
    "MalformedTicketError",
    "Rejected",
    "RejectionKind",
    "RejectionReason",
    "TicketLifecycleEngine",
    "TransitionResult",
    "validate_ticket",
]
