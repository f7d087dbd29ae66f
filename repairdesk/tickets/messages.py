"""User-facing wording for rejections and statuses."""

from __future__ import annotations

from typing import Mapping

from .engine import RejectionKind, RejectionReason
from .state import TicketStatus

SUPPORTED_LOCALES: tuple[str, ...] = ("th", "en")
DEFAULT_LOCALE = "th"

STATUS_LABELS: Mapping[str, Mapping[TicketStatus, str]] = {
    "th": {
        TicketStatus.PENDING: "รอดำเนินการ",
        TicketStatus.ASSIGNED: "มอบหมายแล้ว",
        TicketStatus.IN_PROGRESS: "กำลังดำเนินการ",
        TicketStatus.WAITING_PARTS: "รออะไหล่",
        TicketStatus.COMPLETED: "เสร็จสิ้น",
        TicketStatus.CANCELLED: "ยกเลิก",
    },
    "en": {
        TicketStatus.PENDING: "Pending",
        TicketStatus.ASSIGNED: "Assigned",
        TicketStatus.IN_PROGRESS: "In progress",
        TicketStatus.WAITING_PARTS: "Waiting for parts",
        TicketStatus.COMPLETED: "Completed",
        TicketStatus.CANCELLED: "Cancelled",
    },
}

_KIND_MESSAGES: Mapping[str, Mapping[RejectionKind, str]] = {
    "th": {
        RejectionKind.ILLEGAL_TRANSITION: "ไม่สามารถเปลี่ยนสถานะงานซ่อมตามที่ร้องขอได้",
        RejectionKind.PRECONDITION_FAILED: "ข้อมูลไม่ครบถ้วนสำหรับการเปลี่ยนสถานะ",
        RejectionKind.UNAUTHORIZED: "คุณไม่มีสิทธิ์ดำเนินการกับงานซ่อมนี้",
    },
    "en": {
        RejectionKind.ILLEGAL_TRANSITION: "This status change is not allowed for the repair ticket",
        RejectionKind.PRECONDITION_FAILED: "The repair ticket is missing information required for this change",
        RejectionKind.UNAUTHORIZED: "You are not allowed to perform this action on the repair ticket",
    },
}

_INVARIANT_MESSAGES: Mapping[str, Mapping[str, str]] = {
    "th": {
        "assignees": "ต้องมีผู้รับผิดชอบอย่างน้อยหนึ่งคน",
        "notes": "กรุณาระบุบันทึกการปิดงานก่อนเปลี่ยนเป็นเสร็จสิ้น",
        "reason": "กรุณาระบุเหตุผลที่ปฏิเสธงาน",
    },
    "en": {
        "assignees": "At least one assignee is required",
        "notes": "Closing notes are required before completing the ticket",
        "reason": "A reason is required to reject the job",
    },
}

CONFLICT_MESSAGES: Mapping[str, str] = {
    "th": "งานซ่อมนี้ถูกแก้ไขโดยผู้อื่นแล้ว กรุณาโหลดข้อมูลใหม่แล้วลองอีกครั้ง",
    "en": "The repair ticket was changed by someone else. Reload it and try again",
}


def negotiate_locale(accept_language: str | None) -> str:
    """Pick a supported locale from an ``Accept-Language`` header value."""

    if not accept_language:
        return DEFAULT_LOCALE
    for part in accept_language.split(","):
        tag = part.split(";", 1)[0].strip().lower()
        primary = tag.split("-", 1)[0]
        if primary in SUPPORTED_LOCALES:
            return primary
    return DEFAULT_LOCALE


def status_label(status: TicketStatus, locale: str = DEFAULT_LOCALE) -> str:
    labels = STATUS_LABELS.get(locale, STATUS_LABELS[DEFAULT_LOCALE])
    return labels[status]


def describe_rejection(reason: RejectionReason, locale: str = DEFAULT_LOCALE) -> str:
    """Translate a rejection into a message suitable for the person who asked."""

    if locale not in SUPPORTED_LOCALES:
        locale = DEFAULT_LOCALE
    if reason.kind == RejectionKind.PRECONDITION_FAILED and reason.invariant:
        specific = _INVARIANT_MESSAGES[locale].get(reason.invariant)
        if specific:
            return specific
    return _KIND_MESSAGES[locale][reason.kind]


def describe_conflict(locale: str = DEFAULT_LOCALE) -> str:
    return CONFLICT_MESSAGES.get(locale, CONFLICT_MESSAGES[DEFAULT_LOCALE])
