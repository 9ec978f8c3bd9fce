"""Database models and utilities."""

from .models import (
    StaffMemberTable,
    TicketAssignmentTable,
    TicketCategoryTable,
    TicketCommentTable,
    TicketEventTable,
    TicketFeedbackTable,
    TicketTable,
)

__all__ = [
    "StaffMemberTable",
    "TicketAssignmentTable",
    "TicketCategoryTable",
    "TicketCommentTable",
    "TicketEventTable",
    "TicketFeedbackTable",
    "TicketTable",
]
