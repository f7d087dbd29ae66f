from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from repairdesk.core.config import get_settings
from repairdesk.dependencies.auth import role_required
from repairdesk.notifications import LoggingNotificationDispatcher, NotificationDispatcher
from repairdesk.tickets.messages import SUPPORTED_LOCALES, negotiate_locale
from repairdesk.tickets.models import Actor, Role
from repairdesk.tickets.service import TicketService

require_staff = role_required(Role.IT, Role.ADMIN)

StaffActor = Annotated[Actor, Depends(require_staff)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_notifier(request: Request) -> NotificationDispatcher:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = LoggingNotificationDispatcher()
        request.app.state.notifier = notifier
    return notifier


async def get_locale(request: Request) -> str:
    header = request.headers.get("Accept-Language")
    if header:
        return negotiate_locale(header)
    default = get_settings().default_locale
    return default if default in SUPPORTED_LOCALES else negotiate_locale(None)
