from __future__ import annotations

import pytest

from repairdesk.tickets.engine import (
    Accepted,
    MalformedTicketError,
    Rejected,
    RejectionKind,
    TicketLifecycleEngine,
)
from repairdesk.tickets.models import HistoryAction, NotificationKind, TicketChanges
from repairdesk.tickets.state import TicketStatus, Urgency

from conftest import FIXED_NOW


def _rejection(result) -> RejectionKind:
    assert isinstance(result, Rejected), result
    return result.reason.kind


@pytest.mark.parametrize("terminal", [TicketStatus.COMPLETED, TicketStatus.CANCELLED])
def test_terminal_tickets_reject_every_transition(engine, make_ticket, admin, tech1, reporter, terminal):
    ticket = make_ticket(status=terminal, assignees=frozenset({tech1.user_id}), notes="Replaced fuser")
    targets = [None, *TicketStatus]
    for actor in (admin, tech1, reporter):
        for target in targets:
            result = engine.propose_transition(ticket, actor, target, TicketChanges(notes="more"))
            assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


@pytest.mark.parametrize("terminal", [TicketStatus.COMPLETED, TicketStatus.CANCELLED])
def test_terminal_tickets_reject_job_operations(engine, make_ticket, admin, tech1, terminal):
    ticket = make_ticket(status=terminal, assignees=frozenset({tech1.user_id}), notes="done")

    assert _rejection(engine.accept_job(ticket, tech1)) is RejectionKind.ILLEGAL_TRANSITION
    assert _rejection(engine.reject_job(ticket, tech1, "busy")) is RejectionKind.ILLEGAL_TRANSITION
    assert _rejection(engine.assign(ticket, admin, [tech1.user_id])) is RejectionKind.ILLEGAL_TRANSITION


def test_entering_in_progress_requires_an_assignee(engine, make_ticket, admin):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.propose_transition(ticket, admin, TicketStatus.IN_PROGRESS)

    assert _rejection(result) is RejectionKind.PRECONDITION_FAILED
    assert result.reason.invariant == "assignees"


def test_completing_requires_notes(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, tech1, TicketStatus.COMPLETED)

    assert _rejection(result) is RejectionKind.PRECONDITION_FAILED
    assert result.reason.invariant == "notes"


def test_blank_notes_do_not_count_as_closing_notes(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.WAITING_PARTS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, admin, TicketStatus.COMPLETED, TicketChanges(notes="   "))

    assert result.reason.invariant == "notes"


def test_completing_with_notes_in_the_same_change(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, tech1, TicketStatus.COMPLETED, TicketChanges(notes="Replaced the roller")
    )

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.COMPLETED
    assert result.ticket.notes == "Replaced the roller"
    assert [entry.action for entry in result.history] == [HistoryAction.STATUS_CHANGE]
    assert result.history[0].from_status is TicketStatus.IN_PROGRESS
    assert result.history[0].to_status is TicketStatus.COMPLETED


def test_repeating_an_accepted_transition_is_rejected(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    first = engine.accept_job(ticket, tech1)
    assert isinstance(first, Accepted)

    assert _rejection(engine.accept_job(first.ticket, tech1)) is RejectionKind.ILLEGAL_TRANSITION
    again = engine.propose_transition(first.ticket, tech1, TicketStatus.IN_PROGRESS)
    assert _rejection(again) is RejectionKind.ILLEGAL_TRANSITION


def test_repeating_waiting_parts_is_rejected(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    first = engine.propose_transition(ticket, tech1, TicketStatus.WAITING_PARTS)
    second = engine.propose_transition(first.ticket, tech1, TicketStatus.WAITING_PARTS)

    assert isinstance(first, Accepted)
    assert _rejection(second) is RejectionKind.ILLEGAL_TRANSITION


def test_admin_assigning_only_themself_starts_the_work(engine, make_ticket, admin):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.assign(ticket, admin, [admin.user_id])

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.IN_PROGRESS
    assert result.ticket.assignees == frozenset({admin.user_id})
    assert len(result.history) == 1
    entry = result.history[0]
    assert entry.action is HistoryAction.ASSIGN
    assert entry.assigner == entry.assignee == admin.user_id
    assert result.notifications == ()


def test_admin_assigning_two_technicians_waits_for_acceptance(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.assign(ticket, admin, [tech1.user_id, tech2.user_id])

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.ASSIGNED
    assert [entry.action for entry in result.history] == [HistoryAction.ASSIGN, HistoryAction.ASSIGN]
    assert {entry.assignee for entry in result.history} == {tech1.user_id, tech2.user_id}
    assert all(entry.created_at == FIXED_NOW for entry in result.history)
    assert [request.kind for request in result.notifications] == [NotificationKind.ASSIGNEE] * 2
    assert {request.recipient_id for request in result.notifications} == {tech1.user_id, tech2.user_id}


def test_admin_assigning_themself_and_another_is_assigned(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.assign(ticket, admin, [admin.user_id, tech1.user_id])

    assert result.ticket.status is TicketStatus.ASSIGNED


def test_duplicate_assignee_ids_collapse_into_a_set(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.assign(ticket, admin, [tech1.user_id, tech1.user_id])

    assert result.ticket.assignees == frozenset({tech1.user_id})
    assert len(result.history) == 1


def test_reassigning_a_pending_ticket_logs_both_sides(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.PENDING, assignees=frozenset({tech2.user_id}))

    result = engine.assign(ticket, admin, [tech1.user_id])

    assert result.ticket.status is TicketStatus.ASSIGNED
    assert [(entry.action, entry.assignee) for entry in result.history] == [
        (HistoryAction.ASSIGN, tech1.user_id),
        (HistoryAction.UNASSIGN, tech2.user_id),
    ]


def test_assigning_the_same_set_again_is_rejected(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING, assignees=frozenset({tech1.user_id}))

    assert _rejection(engine.assign(ticket, admin, [tech1.user_id])) is RejectionKind.ILLEGAL_TRANSITION


def test_only_admins_assign(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING)

    assert _rejection(engine.assign(ticket, tech1, [tech1.user_id])) is RejectionKind.UNAUTHORIZED


def test_assigning_outside_pending_is_illegal(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    assert _rejection(engine.assign(ticket, admin, [tech2.user_id])) is RejectionKind.ILLEGAL_TRANSITION


def test_explicit_target_must_match_the_derived_status(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.propose_transition(
        ticket,
        admin,
        TicketStatus.IN_PROGRESS,
        TicketChanges(assignee_ids=frozenset({tech1.user_id, tech2.user_id})),
    )

    assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


def test_assigned_technician_accepts(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.accept_job(ticket, tech1)

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.IN_PROGRESS
    assert len(result.history) == 1
    assert result.history[0].action is HistoryAction.ACCEPT
    assert result.history[0].assignee == tech1.user_id


def test_other_technician_cannot_accept(engine, make_ticket, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    assert _rejection(engine.accept_job(ticket, tech2)) is RejectionKind.UNAUTHORIZED


def test_accepting_a_pending_ticket_is_illegal(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING, assignees=frozenset({tech1.user_id}))

    assert _rejection(engine.accept_job(ticket, tech1)) is RejectionKind.ILLEGAL_TRANSITION


def test_rejecting_returns_the_ticket_to_the_pool(engine, make_ticket, tech1, tech2):
    ticket = make_ticket(
        status=TicketStatus.ASSIGNED,
        assignees=frozenset({tech1.user_id, tech2.user_id}),
        notes="Reported twice",
    )

    result = engine.reject_job(ticket, tech1, "  On leave this week ")

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.PENDING
    assert result.ticket.assignees == frozenset()
    assert result.ticket.notes == "Reported twice\n[Rejected by tech1]: On leave this week"
    assert [(entry.action, entry.assignee) for entry in result.history] == [
        (HistoryAction.UNASSIGN, tech2.user_id),
        (HistoryAction.REJECT, tech1.user_id),
    ]
    entry = result.history[-1]
    assert entry.action is HistoryAction.REJECT
    assert entry.assignee == tech1.user_id
    assert entry.note == "On leave this week"


@pytest.mark.parametrize("reason", ["", "   ", None])
def test_rejecting_without_a_reason_fails(engine, make_ticket, tech1, reason):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.reject_job(ticket, tech1, reason)

    assert _rejection(result) is RejectionKind.PRECONDITION_FAILED
    assert result.reason.invariant == "reason"


def test_rejecting_through_a_proposal_also_needs_a_reason(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, tech1, TicketStatus.PENDING)

    assert result.reason.invariant == "reason"


def test_non_assignee_cannot_reject(engine, make_ticket, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    assert _rejection(engine.reject_job(ticket, tech2, "not mine")) is RejectionKind.UNAUTHORIZED


def test_admin_unassigning_clears_all_assignees(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id, tech2.user_id}))

    result = engine.propose_transition(ticket, admin, TicketStatus.PENDING)

    assert result.ticket.status is TicketStatus.PENDING
    assert result.ticket.assignees == frozenset()
    assert [entry.action for entry in result.history] == [
        HistoryAction.UNASSIGN,
        HistoryAction.UNASSIGN,
        HistoryAction.STATUS_CHANGE,
    ]


def test_assignment_and_status_changes_are_logged_separately(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket,
        admin,
        TicketStatus.PENDING,
        TicketChanges(assignee_ids=frozenset(), note="Swapping technicians"),
    )

    assert [(entry.action, entry.assignee) for entry in result.history] == [
        (HistoryAction.UNASSIGN, tech1.user_id),
        (HistoryAction.STATUS_CHANGE, None),
    ]
    assert result.history[-1].note == "Swapping technicians"


def test_returning_to_pending_cannot_keep_assignees(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, admin, TicketStatus.PENDING, TicketChanges(assignee_ids=frozenset({tech2.user_id}))
    )

    assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


def test_reporters_cannot_change_tickets(engine, make_ticket, reporter):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.propose_transition(ticket, reporter, TicketStatus.CANCELLED)

    assert _rejection(result) is RejectionKind.UNAUTHORIZED


def test_unassigned_technician_cannot_progress_a_ticket(engine, make_ticket, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, tech2, TicketStatus.WAITING_PARTS)

    assert _rejection(result) is RejectionKind.UNAUTHORIZED


def test_technician_must_accept_before_cancelling(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, tech1, TicketStatus.CANCELLED)

    assert _rejection(result) is RejectionKind.UNAUTHORIZED


def test_technician_cannot_change_assignees(engine, make_ticket, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, tech1, changes=TicketChanges(assignee_ids=frozenset({tech1.user_id, tech2.user_id}))
    )

    assert _rejection(result) is RejectionKind.UNAUTHORIZED


def test_admin_cannot_change_assignees_while_work_is_underway(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, admin, changes=TicketChanges(assignee_ids=frozenset({tech2.user_id}))
    )

    assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


def test_in_progress_cannot_go_back_to_pending(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, admin, TicketStatus.PENDING)

    assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


def test_waiting_for_parts_round_trip(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    waiting = engine.propose_transition(ticket, tech1, TicketStatus.WAITING_PARTS, TicketChanges(note="Ordered toner"))
    resumed = engine.propose_transition(waiting.ticket, tech1, TicketStatus.IN_PROGRESS)

    assert resumed.ticket.status is TicketStatus.IN_PROGRESS
    assert waiting.history[0].action is HistoryAction.STATUS_CHANGE
    assert waiting.history[0].assignee is None
    assert waiting.history[0].note == "Ordered toner"


def test_technician_edits_fields_of_their_job(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, tech1, changes=TicketChanges(urgency=Urgency.CRITICAL, location="Server room")
    )

    assert isinstance(result, Accepted)
    assert result.ticket.status is TicketStatus.IN_PROGRESS
    assert result.ticket.urgency is Urgency.CRITICAL
    assert result.ticket.location == "Server room"
    assert result.ticket.updated_at == FIXED_NOW
    assert result.history == ()


def test_technician_cannot_edit_before_accepting(engine, make_ticket, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(ticket, tech1, changes=TicketChanges(notes="looking"))

    assert _rejection(result) is RejectionKind.UNAUTHORIZED


def test_a_change_that_changes_nothing_is_rejected(engine, make_ticket, admin):
    ticket = make_ticket(status=TicketStatus.PENDING)

    result = engine.propose_transition(ticket, admin, changes=TicketChanges(title=ticket.title))

    assert _rejection(result) is RejectionKind.ILLEGAL_TRANSITION


def test_message_to_reporter_requests_a_notification(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.WAITING_PARTS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket,
        admin,
        TicketStatus.COMPLETED,
        TicketChanges(notes="Fuser replaced", message_to_reporter="Your printer is ready"),
    )

    assert isinstance(result, Accepted)
    assert len(result.notifications) == 1
    request = result.notifications[0]
    assert request.kind is NotificationKind.REPORTER
    assert request.message == "Your printer is ready"
    assert request.ticket_code == ticket.ticket_code


def test_unchanged_message_to_reporter_is_not_resent(engine, make_ticket, admin):
    ticket = make_ticket(status=TicketStatus.PENDING, message_to_reporter="We are on it")

    result = engine.propose_transition(
        ticket, admin, changes=TicketChanges(message_to_reporter="We are on it", urgency=Urgency.URGENT)
    )

    assert isinstance(result, Accepted)
    assert result.notifications == ()


def test_engine_does_not_mutate_the_input_snapshot(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.PENDING)

    engine.assign(ticket, admin, [tech1.user_id])

    assert ticket.status is TicketStatus.PENDING
    assert ticket.assignees == frozenset()


def test_malformed_ticket_is_a_hard_fault(engine, make_ticket, admin):
    with pytest.raises(MalformedTicketError):
        engine.propose_transition(make_ticket(status="OPEN"), admin, TicketStatus.CANCELLED)
    with pytest.raises(MalformedTicketError):
        engine.propose_transition(make_ticket(assignees=[1, 1]), admin, TicketStatus.CANCELLED)
    with pytest.raises(MalformedTicketError):
        engine.accept_job(make_ticket(id=""), admin)


def test_derive_assignment_status(admin, tech1):
    derive = TicketLifecycleEngine.derive_assignment_status
    assert derive(admin, frozenset()) is TicketStatus.PENDING
    assert derive(admin, frozenset({admin.user_id})) is TicketStatus.IN_PROGRESS
    assert derive(admin, frozenset({tech1.user_id})) is TicketStatus.ASSIGNED
    assert derive(admin, frozenset({admin.user_id, tech1.user_id})) is TicketStatus.ASSIGNED


def test_rejected_job_can_be_reassigned_to_the_remaining_technician(engine, make_ticket, admin, tech1, tech2):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({tech1.user_id, tech2.user_id}))

    rejected = engine.reject_job(ticket, tech1, "busy")
    assert rejected.ticket.status is TicketStatus.PENDING
    assert rejected.ticket.assignees == frozenset()

    reassigned = engine.assign(rejected.ticket, admin, [tech2.user_id])

    assert isinstance(reassigned, Accepted)
    assert reassigned.ticket.status is TicketStatus.ASSIGNED
    assert reassigned.ticket.assignees == frozenset({tech2.user_id})
    assert [(entry.action, entry.assignee) for entry in reassigned.history] == [
        (HistoryAction.ASSIGN, tech2.user_id)
    ]


def test_resuming_work_with_no_assignees_fails_the_assignee_precondition(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.WAITING_PARTS, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, admin, TicketStatus.IN_PROGRESS, TicketChanges(assignee_ids=frozenset())
    )

    assert _rejection(result) is RejectionKind.PRECONDITION_FAILED
    assert result.reason.invariant == "assignees"


def test_starting_a_pending_ticket_with_no_assignees_fails_the_assignee_precondition(
    engine, make_ticket, admin, tech1
):
    ticket = make_ticket(status=TicketStatus.PENDING, assignees=frozenset({tech1.user_id}))

    result = engine.propose_transition(
        ticket, admin, TicketStatus.IN_PROGRESS, TicketChanges(assignee_ids=frozenset())
    )

    assert _rejection(result) is RejectionKind.PRECONDITION_FAILED
    assert result.reason.invariant == "assignees"


def test_admin_on_the_assignee_list_unassigns_without_a_reason(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({admin.user_id, tech1.user_id}))

    result = engine.propose_transition(ticket, admin, TicketStatus.PENDING)

    assert isinstance(result, Accepted)
    assert result.ticket.assignees == frozenset()
    assert [(entry.action, entry.assignee) for entry in result.history] == [
        (HistoryAction.UNASSIGN, admin.user_id),
        (HistoryAction.UNASSIGN, tech1.user_id),
        (HistoryAction.STATUS_CHANGE, None),
    ]


def test_admin_on_the_assignee_list_can_still_accept_through_accept_job(engine, make_ticket, admin, tech1):
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assignees=frozenset({admin.user_id, tech1.user_id}))

    moved = engine.propose_transition(ticket, admin, TicketStatus.IN_PROGRESS)
    accepted = engine.accept_job(ticket, admin)

    assert [entry.action for entry in moved.history] == [HistoryAction.STATUS_CHANGE]
    assert [entry.action for entry in accepted.history] == [HistoryAction.ACCEPT]
