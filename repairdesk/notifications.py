"""Delivery of notification requests produced by the lifecycle engine.

Delivery itself (LINE messages, e-mail) is owned by an external service. This
module defines the seam and a default dispatcher that only records the request.
"""

from __future__ import annotations

import logging
from typing import Protocol

from repairdesk.tickets.models import NotificationKind, NotificationRequest

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def dispatch(self, request: NotificationRequest) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that writes each request to the log instead of sending it."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def dispatch(self, request: NotificationRequest) -> None:
        if request.kind == NotificationKind.ASSIGNEE:
            self._log.info(
                "Notify technician %s about ticket %s: %s",
                request.recipient_id,
                request.ticket_code,
                request.message,
            )
        else:
            self._log.info("Notify reporter of ticket %s: %s", request.ticket_code, request.message)


async def dispatch_all(dispatcher: NotificationDispatcher, requests: tuple[NotificationRequest, ...]) -> None:
    """Send every request; one failed delivery does not stop the rest."""

    for request in requests:
        try:
            await dispatcher.dispatch(request)
        except Exception:
            logger.exception(
                "Failed to dispatch %s notification for ticket %s",
                request.kind.value,
                request.ticket_code,
            )
