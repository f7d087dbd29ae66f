"""Database models and utilities."""

from .models import AssignmentHistoryTable, RepairTicketAssigneeTable, RepairTicketTable

__all__ = [
    "AssignmentHistoryTable",
    "RepairTicketAssigneeTable",
    "RepairTicketTable",
]
