from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from opentelemetry import trace

from .engine import Accepted, Rejected, TicketLifecycleEngine, TransitionResult
from .errors import TicketConflictError, TicketNotFoundError, TicketServiceError, TicketTransitionRejected
from .models import Actor, AssignmentHistoryEntry, NotificationRequest, Ticket, TicketChanges
from .repository import TicketRepository
from .state import TicketStateMachine, TicketStatus, Urgency

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class TicketUpdate:
    """Outcome of a committed change. Notifications are for the caller to send."""

    ticket: Ticket
    history: tuple[AssignmentHistoryEntry, ...]
    notifications: tuple[NotificationRequest, ...]


def generate_ticket_code(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"RP-{moment:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class TicketService:
    """High level orchestration: load a snapshot, ask the engine, persist the outcome."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        engine: TicketLifecycleEngine | None = None,
    ) -> None:
        self._repository = repository
        self._engine = engine or TicketLifecycleEngine()

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        title: str,
        description: str = "",
        category: str = "",
        location: str = "",
        urgency: Urgency = Urgency.NORMAL,
        reporter_name: str = "",
        reporter_department: str = "",
        reporter_phone: str = "",
    ) -> Ticket:
        now = datetime.now(timezone.utc)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_code=generate_ticket_code(now),
            status=TicketStateMachine.initial_state(),
            urgency=urgency,
            title=title,
            description=description,
            location=location,
            category=category,
            reporter_name=reporter_name,
            reporter_department=reporter_department,
            reporter_phone=reporter_phone,
            version=1,
            created_at=now,
            updated_at=now,
        )
        created = await self._repository.create_ticket(ticket)
        logger.info("Repair ticket %s reported", created.ticket_code)
        return created

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assignee_id: int | None = None,
    ) -> Sequence[Ticket]:
        return await self._repository.list_tickets(status=status, assignee_id=assignee_id)

    async def get_history(self, ticket_id: str) -> Sequence[AssignmentHistoryEntry]:
        await self.get_ticket(ticket_id)
        return await self._repository.get_history(ticket_id)

    async def apply_change(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        target_status: TicketStatus | None = None,
        changes: TicketChanges | None = None,
        expected_version: int | None = None,
    ) -> TicketUpdate:
        return await self._commit(
            "apply_change",
            ticket_id,
            actor,
            expected_version,
            lambda ticket: self._engine.propose_transition(ticket, actor, target_status, changes),
        )

    async def accept_job(self, ticket_id: str, actor: Actor, *, expected_version: int | None = None) -> TicketUpdate:
        return await self._commit(
            "accept_job",
            ticket_id,
            actor,
            expected_version,
            lambda ticket: self._engine.accept_job(ticket, actor),
        )

    async def reject_job(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        reason: str,
        expected_version: int | None = None,
    ) -> TicketUpdate:
        return await self._commit(
            "reject_job",
            ticket_id,
            actor,
            expected_version,
            lambda ticket: self._engine.reject_job(ticket, actor, reason),
        )

    async def assign(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        assignee_ids: Iterable[int],
        expected_version: int | None = None,
    ) -> TicketUpdate:
        assignee_ids = frozenset(assignee_ids)
        return await self._commit(
            "assign",
            ticket_id,
            actor,
            expected_version,
            lambda ticket: self._engine.assign(ticket, actor, assignee_ids),
        )

    async def _commit(
        self,
        operation: str,
        ticket_id: str,
        actor: Actor,
        expected_version: int | None,
        decide: Callable[[Ticket], TransitionResult],
    ) -> TicketUpdate:
        with tracer.start_as_current_span(f"tickets.{operation}") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("actor.role", actor.role.value)

            ticket = await self.get_ticket(ticket_id)
            if expected_version is not None and expected_version != ticket.version:
                logger.info(
                    "Stale %s on ticket %s: client version %s, stored %s",
                    operation,
                    ticket.ticket_code,
                    expected_version,
                    ticket.version,
                )
                raise TicketConflictError(ticket_id, expected_version, ticket.version)

            result = decide(ticket)
            if isinstance(result, Rejected):
                span.set_attribute("ticket.rejection", result.reason.kind.value)
                logger.info(
                    "Rejected %s on ticket %s by user %s: %s (%s)",
                    operation,
                    ticket.ticket_code,
                    actor.user_id,
                    result.reason.kind.value,
                    result.reason.message,
                )
                raise TicketTransitionRejected(result.reason)
            if not isinstance(result, Accepted):  # pragma: no cover - engine contract
                raise TicketServiceError(f"Unexpected engine result {result!r}")

            saved = await self._repository.save(
                result.ticket,
                expected_version=ticket.version,
                history=result.history,
            )
            logger.info(
                "Ticket %s %s by user %s: %s -> %s",
                saved.ticket_code,
                operation,
                actor.user_id,
                ticket.status.value,
                saved.status.value,
            )
            return TicketUpdate(ticket=saved, history=result.history, notifications=result.notifications)


__all__ = [
    "TicketConflictError",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketTransitionRejected",
    "TicketUpdate",
    "generate_ticket_code",
]
