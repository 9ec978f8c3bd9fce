from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from .state import TicketStatus


class ActorKind(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
    SYSTEM = "system"


class StaffRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    WORKER = "worker"


ASSIGNABLE_ROLES: frozenset[StaffRole] = frozenset({StaffRole.MANAGER, StaffRole.WORKER})


class EventKind(str, Enum):
    STATUS_CHANGED = "status_changed"
    ASSIGNMENT_REPLACED = "assignment_replaced"
    COMMENT_ADDED = "comment_added"


@dataclass(slots=True, frozen=True)
class Actor:
    """Authenticated caller resolved by the external auth component."""

    id: str
    kind: ActorKind
    name: str = ""
    role: StaffRole | None = None

    @property
    def is_student(self) -> bool:
        return self.kind is ActorKind.STUDENT

    @property
    def is_staff(self) -> bool:
        return self.kind is ActorKind.STAFF


SYSTEM_ACTOR = Actor(id="system", kind=ActorKind.SYSTEM, name="System")


@dataclass(slots=True)
class Ticket:
    """Current state of a student ticket."""

    id: str
    ticket_number: str
    category_id: int
    sub_category_id: int | None
    title: str
    description: str
    photo_ref: str | None
    status: TicketStatus
    student_id: str
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass(slots=True)
class Assignment:
    """Binding of a ticket to a single staff member."""

    id: str
    ticket_id: str
    assignee_id: str
    assignee_role: StaffRole
    assigned_by: str
    notes: str | None
    assigned_at: datetime
    is_active: bool = True
    ended_at: datetime | None = None


@dataclass(slots=True)
class Comment:
    id: str
    ticket_id: str
    author_id: str
    author_kind: ActorKind
    text: str
    is_internal: bool
    created_at: datetime


@dataclass(slots=True)
class Feedback:
    id: str
    ticket_id: str
    student_id: str
    rating: int
    feedback_text: str | None
    created_at: datetime


@dataclass(slots=True)
class TicketEvent:
    """Single entry of the append-only ticket history."""

    ticket_id: str
    kind: EventKind
    actor_id: str
    created_at: datetime
    from_status: TicketStatus | None = None
    to_status: TicketStatus | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    seq: int | None = None

    @property
    def is_internal(self) -> bool:
        return self.kind is EventKind.COMMENT_ADDED and bool(self.payload.get("is_internal"))


@dataclass(slots=True)
class TicketDetail:
    """Container bundling the ticket with its sub-records and history."""

    ticket: Ticket
    assignments: Sequence[Assignment]
    comments: Sequence[Comment]
    feedback: Feedback | None
    history: Sequence[TicketEvent]


@dataclass(slots=True)
class TicketSummary:
    ticket: Ticket
    assignee_ids: Sequence[str] = ()


@dataclass(slots=True)
class TicketPage:
    items: Sequence[TicketSummary]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(slots=True)
class TicketFilters:
    status: TicketStatus | None = None
    category_id: int | None = None
    assigned_to: str | None = None
    student_id: str | None = None
    search: str | None = None
    page: int = 1
    limit: int = 50


@dataclass(slots=True)
class Category:
    id: int
    name: str
    parent_id: int | None
    is_active: bool
    is_high_priority: bool = False


@dataclass(slots=True)
class StaffMember:
    id: str
    name: str
    role: StaffRole
    is_active: bool = True


@dataclass(slots=True)
class StatusCounts:
    counts: Mapping[TicketStatus, int]
    total: int


@dataclass(slots=True)
class CategoryCount:
    category_id: int
    category_name: str
    count: int


@dataclass(slots=True)
class EmployeeStats:
    total_assigned: int
    completed: int
    in_progress: int
    critical_pending: int


@dataclass(slots=True)
class Interaction:
    """Event from the employee feed joined with its ticket summary."""

    event: TicketEvent
    ticket_number: str
    ticket_title: str
    ticket_status: TicketStatus


@dataclass(slots=True)
class EmployeeHistory:
    employee: StaffMember
    stats: EmployeeStats
    interactions: Sequence[Interaction]
