from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Awaitable, NoReturn, TypeVar

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from repairdesk.dependencies.auth import CurrentActor
from repairdesk.dependencies.tickets import (
    StaffActor,
    get_locale,
    get_notifier,
    get_ticket_service,
)
from repairdesk.notifications import NotificationDispatcher, dispatch_all
from repairdesk.tickets.engine import RejectionKind
from repairdesk.tickets.errors import TicketConflictError, TicketNotFoundError, TicketTransitionRejected
from repairdesk.tickets.messages import describe_conflict, describe_rejection
from repairdesk.tickets.models import AssignmentHistoryEntry, HistoryAction, Ticket, TicketChanges
from repairdesk.tickets.service import TicketService, TicketUpdate
from repairdesk.tickets.state import TicketStatus, Urgency

router = APIRouter(prefix="/repairs", tags=["repairs"])

T = TypeVar("T")

_REJECTION_STATUS_CODES: dict[RejectionKind, int] = {
    RejectionKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    RejectionKind.ILLEGAL_TRANSITION: status.HTTP_409_CONFLICT,
    RejectionKind.PRECONDITION_FAILED: 422,
}


class RepairReportRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="")
    category: str = Field(default="", max_length=100)
    location: str = Field(default="", max_length=255)
    urgency: Urgency = Urgency.NORMAL
    reporter_name: str = Field(default="", max_length=255)
    reporter_department: str = Field(default="", max_length=255)
    reporter_phone: str = Field(default="", max_length=50)


class RepairUpdateRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)
    status: TicketStatus | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    location: str | None = Field(default=None, max_length=255)
    category: str | None = Field(default=None, max_length=100)
    urgency: Urgency | None = None
    notes: str | None = None
    message_to_reporter: str | None = None
    estimated_completion_date: date | None = None
    assignee_ids: list[int] | None = None
    note: str | None = Field(default=None, max_length=500)

    def ensure_payload(self) -> None:
        if not self.model_fields_set - {"version", "note"}:
            raise HTTPException(status_code=400, detail="No fields provided for update")

    def to_changes(self) -> TicketChanges:
        return TicketChanges(
            title=self.title,
            description=self.description,
            location=self.location,
            category=self.category,
            urgency=self.urgency,
            notes=self.notes,
            message_to_reporter=self.message_to_reporter,
            estimated_completion_date=self.estimated_completion_date,
            assignee_ids=None if self.assignee_ids is None else frozenset(self.assignee_ids),
            note=self.note,
        )


class JobAcceptRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)


class JobRejectRequest(BaseModel):
    reason: str = Field(default="", max_length=500)
    version: int | None = Field(default=None, ge=1)


class AssignRequest(BaseModel):
    assignee_ids: list[int]
    version: int | None = Field(default=None, ge=1)


class TicketResponse(BaseModel):
    id: str
    ticket_code: str
    status: TicketStatus
    urgency: Urgency
    title: str
    description: str
    location: str
    category: str
    assignees: list[int]
    notes: str
    message_to_reporter: str
    estimated_completion_date: date | None
    reporter_name: str
    reporter_department: str
    reporter_phone: str
    version: int
    created_at: datetime | None
    updated_at: datetime | None


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None
    ticket_id: str
    action: HistoryAction
    assigner: int
    assignee: int | None
    from_status: TicketStatus
    to_status: TicketStatus
    note: str | None
    created_at: datetime


class TicketUpdateResponse(BaseModel):
    ticket: TicketResponse
    history: list[HistoryEntryResponse]


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
NotifierDep = Annotated[NotificationDispatcher, Depends(get_notifier)]
LocaleDep = Annotated[str, Depends(get_locale)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        ticket_code=ticket.ticket_code,
        status=ticket.status,
        urgency=ticket.urgency,
        title=ticket.title,
        description=ticket.description,
        location=ticket.location,
        category=ticket.category,
        assignees=sorted(ticket.assignees),
        notes=ticket.notes,
        message_to_reporter=ticket.message_to_reporter,
        estimated_completion_date=ticket.estimated_completion_date,
        reporter_name=ticket.reporter_name,
        reporter_department=ticket.reporter_department,
        reporter_phone=ticket.reporter_phone,
        version=ticket.version,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def _to_history_response(entry: AssignmentHistoryEntry) -> HistoryEntryResponse:
    return HistoryEntryResponse.model_validate(entry)


def _rejection_to_http(exc: TicketTransitionRejected, locale: str) -> NoReturn:
    reason = exc.reason
    raise HTTPException(
        status_code=_REJECTION_STATUS_CODES[reason.kind],
        detail={
            "code": reason.kind.value,
            "message": describe_rejection(reason, locale),
            "reason": reason.message,
            "invariant": reason.invariant,
        },
    ) from exc


async def _guarded(call: Awaitable[T], locale: str) -> T:
    try:
        return await call
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TicketConflictError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": describe_conflict(locale), "reason": str(exc), "invariant": None},
        ) from exc
    except TicketTransitionRejected as exc:
        _rejection_to_http(exc, locale)


def _respond(update: TicketUpdate, background_tasks: BackgroundTasks, notifier: NotificationDispatcher) -> TicketUpdateResponse:
    # Only reached after the write was committed.
    if update.notifications:
        background_tasks.add_task(dispatch_all, notifier, update.notifications)
    return TicketUpdateResponse(
        ticket=_to_response(update.ticket),
        history=[_to_history_response(entry) for entry in update.history],
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def report_repair(
    payload: RepairReportRequest,
    service: TicketServiceDep,
    _: CurrentActor,
) -> TicketResponse:
    ticket = await service.create_ticket(**payload.model_dump())
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_repairs(
    service: TicketServiceDep,
    _: StaffActor,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    assignee: int | None = Query(default=None),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(status=status_filter, assignee_id=assignee)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_repair(ticket_id: str, service: TicketServiceDep, _: StaffActor) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(ticket)


@router.get("/{ticket_id}/history", response_model=list[HistoryEntryResponse])
async def get_repair_history(
    ticket_id: str, service: TicketServiceDep, _: StaffActor
) -> list[HistoryEntryResponse]:
    try:
        entries = await service.get_history(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_to_history_response(entry) for entry in entries]


@router.put("/{ticket_id}", response_model=TicketUpdateResponse)
async def update_repair(
    ticket_id: str,
    payload: RepairUpdateRequest,
    service: TicketServiceDep,
    notifier: NotifierDep,
    locale: LocaleDep,
    actor: StaffActor,
    background_tasks: BackgroundTasks,
) -> TicketUpdateResponse:
    payload.ensure_payload()
    update = await _guarded(
        service.apply_change(
            ticket_id,
            actor,
            target_status=payload.status,
            changes=payload.to_changes(),
            expected_version=payload.version,
        ),
        locale,
    )
    return _respond(update, background_tasks, notifier)


@router.post("/{ticket_id}/accept", response_model=TicketUpdateResponse)
async def accept_repair_job(
    ticket_id: str,
    service: TicketServiceDep,
    notifier: NotifierDep,
    locale: LocaleDep,
    actor: StaffActor,
    background_tasks: BackgroundTasks,
    payload: JobAcceptRequest | None = None,
) -> TicketUpdateResponse:
    version = payload.version if payload is not None else None
    update = await _guarded(service.accept_job(ticket_id, actor, expected_version=version), locale)
    return _respond(update, background_tasks, notifier)


@router.post("/{ticket_id}/reject", response_model=TicketUpdateResponse)
async def reject_repair_job(
    ticket_id: str,
    payload: JobRejectRequest,
    service: TicketServiceDep,
    notifier: NotifierDep,
    locale: LocaleDep,
    actor: StaffActor,
    background_tasks: BackgroundTasks,
) -> TicketUpdateResponse:
    update = await _guarded(
        service.reject_job(ticket_id, actor, reason=payload.reason, expected_version=payload.version),
        locale,
    )
    return _respond(update, background_tasks, notifier)


@router.put("/{ticket_id}/assignees", response_model=TicketUpdateResponse)
async def assign_repair(
    ticket_id: str,
    payload: AssignRequest,
    service: TicketServiceDep,
    notifier: NotifierDep,
    locale: LocaleDep,
    actor: StaffActor,
    background_tasks: BackgroundTasks,
) -> TicketUpdateResponse:
    update = await _guarded(
        service.assign(ticket_id, actor, assignee_ids=payload.assignee_ids, expected_version=payload.version),
        locale,
    )
    return _respond(update, background_tasks, notifier)
