from __future__ import annotations

from datetime import datetime, timezone

import pytest

from repairdesk.tickets.engine import TicketLifecycleEngine
from repairdesk.tickets.models import Actor, Role, Ticket
from repairdesk.tickets.state import TicketStatus, Urgency

FIXED_NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _build_ticket(
    *,
    status: TicketStatus = TicketStatus.PENDING,
    assignees: frozenset[int] = frozenset(),
    notes: str = "",
    **overrides,
) -> Ticket:
    values = dict(
        id="0f6b8a2e-4c1d-4d7e-9a0b-3f2e1d0c9b8a",
        ticket_code="RP-20240501-A1B2C3",
        status=status,
        urgency=Urgency.NORMAL,
        title="Printer jammed",
        description="Paper stuck in tray 2",
        location="Building A, room 204",
        category="HARDWARE",
        assignees=assignees,
        notes=notes,
        reporter_name="Somchai",
        version=3,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def make_ticket():
    return _build_ticket


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=1, role=Role.ADMIN, name="admin")


@pytest.fixture
def tech1() -> Actor:
    return Actor(user_id=2, role=Role.IT, name="tech1")


@pytest.fixture
def tech2() -> Actor:
    return Actor(user_id=3, role=Role.IT, name="tech2")


@pytest.fixture
def reporter() -> Actor:
    return Actor(user_id=10, role=Role.USER, name="reporter")


@pytest.fixture
def engine() -> TicketLifecycleEngine:
    return TicketLifecycleEngine(clock=lambda: FIXED_NOW)
