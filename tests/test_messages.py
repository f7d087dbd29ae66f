import pytest

from repairdesk.tickets.engine import RejectionKind, RejectionReason
from repairdesk.tickets.messages import (
    DEFAULT_LOCALE,
    describe_conflict,
    describe_rejection,
    negotiate_locale,
    status_label,
)
from repairdesk.tickets.state import TicketStatus


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, "th"),
        ("", "th"),
        ("en-US,en;q=0.9", "en"),
        ("fr-FR, th;q=0.8", "th"),
        ("de", DEFAULT_LOCALE),
    ],
)
def test_negotiate_locale(header, expected):
    assert negotiate_locale(header) == expected


def test_status_labels_cover_every_status():
    for status in TicketStatus:
        assert status_label(status, "th")
        assert status_label(status, "en")
    assert status_label(TicketStatus.WAITING_PARTS, "th") == "รออะไหล่"
    assert status_label(TicketStatus.COMPLETED, "xx") == "เสร็จสิ้น"


def test_precondition_message_names_the_missing_field():
    reason = RejectionReason.precondition_failed("reason", "A reason is required to reject a job")
    assert describe_rejection(reason, "en") == "A reason is required to reject the job"


def test_unknown_invariant_falls_back_to_kind_message():
    reason = RejectionReason.precondition_failed("warranty", "Warranty expired")
    assert describe_rejection(reason, "en") == describe_rejection(
        RejectionReason(kind=RejectionKind.PRECONDITION_FAILED, message=""), "en"
    )


def test_unsupported_locale_uses_default():
    reason = RejectionReason.illegal_transition("nope")
    assert describe_rejection(reason, "ja") == describe_rejection(reason, DEFAULT_LOCALE)
    assert describe_conflict("ja") == describe_conflict(DEFAULT_LOCALE)
