"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Current-state projection of a student ticket."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    category_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    sub_category_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    photo_ref: str | None = Field(default=None, sa_column=Column(String(512), nullable=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    student_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class TicketAssignmentTable(SQLModel, table=True):
    """Current and superseded bindings of a ticket to staff members."""

    __tablename__ = "ticket_assignments"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    )
    assignee_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    assignee_role: str = Field(sa_column=Column(String(20), nullable=False))
    assigned_by: str = Field(sa_column=Column(String(64), nullable=False))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    event_seq: int | None = Field(
        default=None, sa_column=Column(Integer, ForeignKey("ticket_events.seq"), nullable=True)
    )
    assigned_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class TicketCommentTable(SQLModel, table=True):
    """Immutable discussion entries attached to a ticket."""

    __tablename__ = "ticket_comments"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    )
    author_id: str = Field(sa_column=Column(String(64), nullable=False))
    author_kind: str = Field(sa_column=Column(String(20), nullable=False))
    text: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketFeedbackTable(SQLModel, table=True):
    """Single student rating closing a completion cycle."""

    __tablename__ = "ticket_feedback"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, unique=True)
    )
    student_id: str = Field(sa_column=Column(String(64), nullable=False))
    rating: int = Field(sa_column=Column(Integer, nullable=False))
    feedback_text: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketEventTable(SQLModel, table=True):
    """Append-only history of status changes, assignments and comments."""

    __tablename__ = "ticket_events"

    seq: int | None = Field(
        default=None, sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    )
    kind: str = Field(sa_column=Column(String(40), nullable=False))
    actor_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    from_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCategoryTable(SQLModel, table=True):
    """Read-only category taxonomy maintained by the category editor."""

    __tablename__ = "ticket_categories"

    id: int = Field(primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    parent_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    is_high_priority: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))


class StaffMemberTable(SQLModel, table=True):
    """Read-only directory of staff identities that can act on tickets."""

    __tablename__ = "staff_members"

    id: str = Field(primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(sa_column=Column(String(20), nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
