from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from repairdesk.db.models import AssignmentHistoryTable, RepairTicketAssigneeTable, RepairTicketTable

from .errors import TicketConflictError
from .models import AssignmentHistoryEntry, HistoryAction, Ticket
from .state import TicketStatus, Urgency


class TicketRepository:
    """Persistence helper wrapping repair tickets, their assignees and assignment history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._ticket_to_table(ticket))
                for user_id in sorted(ticket.assignees):
                    session.add(RepairTicketAssigneeTable(ticket_id=ticket.id, user_id=user_id))
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(RepairTicketTable, ticket_id)
            if row is None:
                return None
            assignees = await self._load_assignees(session, [ticket_id])
        return self._table_to_ticket(row, assignees.get(ticket_id, ()))

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assignee_id: int | None = None,
    ) -> Sequence[Ticket]:
        statement = select(RepairTicketTable)
        if status is not None:
            statement = statement.where(RepairTicketTable.status == status.value)
        if assignee_id is not None:
            statement = statement.where(
                RepairTicketTable.id.in_(
                    select(RepairTicketAssigneeTable.ticket_id).where(
                        RepairTicketAssigneeTable.user_id == assignee_id
                    )
                )
            )
        statement = statement.order_by(RepairTicketTable.created_at.desc())

        async with self._session_factory() as session:
            result = await session.execute(statement)
            rows = result.scalars().all()
            assignees = await self._load_assignees(session, [row.id for row in rows])
        return [self._table_to_ticket(row, assignees.get(row.id, ())) for row in rows]

    async def save(
        self,
        ticket: Ticket,
        *,
        expected_version: int,
        history: Iterable[AssignmentHistoryEntry] = (),
    ) -> Ticket:
        """Persist ``ticket`` if the stored version still equals ``expected_version``.

        The ticket row, its assignee rows and the new history rows are written in
        one transaction. Raises :class:`TicketConflictError` when another writer got
        there first.
        """

        now = datetime.now(timezone.utc)
        new_version = expected_version + 1
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(RepairTicketTable)
                    .where(RepairTicketTable.id == ticket.id)
                    .where(RepairTicketTable.version == expected_version)
                    .values(
                        status=ticket.status.value,
                        urgency=ticket.urgency.value,
                        title=ticket.title,
                        description=ticket.description,
                        location=ticket.location,
                        category=ticket.category,
                        notes=ticket.notes,
                        message_to_reporter=ticket.message_to_reporter,
                        estimated_completion_date=ticket.estimated_completion_date,
                        version=new_version,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    raise TicketConflictError(ticket.id, expected_version)

                await session.execute(
                    delete(RepairTicketAssigneeTable).where(RepairTicketAssigneeTable.ticket_id == ticket.id)
                )
                for user_id in sorted(ticket.assignees):
                    session.add(RepairTicketAssigneeTable(ticket_id=ticket.id, user_id=user_id))
                for entry in history:
                    session.add(self._history_to_table(entry))
        return replace(ticket, version=new_version, updated_at=now)

    async def get_history(self, ticket_id: str) -> Sequence[AssignmentHistoryEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AssignmentHistoryTable)
                .where(AssignmentHistoryTable.ticket_id == ticket_id)
                .order_by(AssignmentHistoryTable.created_at.asc(), AssignmentHistoryTable.id.asc())
            )
            return [self._table_to_history(row) for row in result.scalars().all()]

    @staticmethod
    async def _load_assignees(session: AsyncSession, ticket_ids: Sequence[str]) -> dict[str, list[int]]:
        if not ticket_ids:
            return {}
        result = await session.execute(
            select(RepairTicketAssigneeTable).where(RepairTicketAssigneeTable.ticket_id.in_(list(ticket_ids)))
        )
        assignees: dict[str, list[int]] = {}
        for row in result.scalars().all():
            assignees.setdefault(row.ticket_id, []).append(int(row.user_id))
        return assignees

    @staticmethod
    def _ticket_to_table(ticket: Ticket) -> RepairTicketTable:
        now = datetime.now(timezone.utc)
        return RepairTicketTable(
            id=ticket.id,
            ticket_code=ticket.ticket_code,
            status=ticket.status.value,
            urgency=ticket.urgency.value,
            title=ticket.title,
            description=ticket.description,
            location=ticket.location,
            category=ticket.category,
            notes=ticket.notes,
            message_to_reporter=ticket.message_to_reporter,
            estimated_completion_date=ticket.estimated_completion_date,
            reporter_name=ticket.reporter_name,
            reporter_department=ticket.reporter_department,
            reporter_phone=ticket.reporter_phone,
            version=ticket.version,
            created_at=ticket.created_at or now,
            updated_at=ticket.updated_at or now,
        )

    @staticmethod
    def _table_to_ticket(row: RepairTicketTable, assignees: Iterable[int]) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_code=row.ticket_code,
            status=TicketStatus(row.status),
            urgency=Urgency(row.urgency),
            title=row.title,
            description=row.description or "",
            location=row.location or "",
            category=row.category or "",
            assignees=frozenset(int(user_id) for user_id in assignees),
            notes=row.notes or "",
            message_to_reporter=row.message_to_reporter or "",
            estimated_completion_date=row.estimated_completion_date,
            reporter_name=row.reporter_name or "",
            reporter_department=row.reporter_department or "",
            reporter_phone=row.reporter_phone or "",
            version=int(row.version),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _history_to_table(entry: AssignmentHistoryEntry) -> AssignmentHistoryTable:
        return AssignmentHistoryTable(
            ticket_id=entry.ticket_id,
            action=entry.action.value,
            assigner_id=entry.assigner,
            assignee_id=entry.assignee,
            from_status=entry.from_status.value,
            to_status=entry.to_status.value,
            note=entry.note,
            created_at=entry.created_at,
        )

    @staticmethod
    def _table_to_history(row: AssignmentHistoryTable) -> AssignmentHistoryEntry:
        return AssignmentHistoryEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            action=HistoryAction(row.action),
            assigner=int(row.assigner_id),
            assignee=None if row.assignee_id is None else int(row.assignee_id),
            from_status=TicketStatus(row.from_status),
            to_status=TicketStatus(row.to_status),
            note=row.note,
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
