from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from packages.db.models import (
    StaffMemberTable,
    TicketAssignmentTable,
    TicketCategoryTable,
    TicketCommentTable,
    TicketFeedbackTable,
    TicketTable,
)

from .errors import ConflictError, TicketNotFoundError
from .models import (
    ActorKind,
    Assignment,
    Category,
    Comment,
    Feedback,
    StaffMember,
    StaffRole,
    Ticket,
    TicketFilters,
    TicketPage,
    TicketSummary,
)
from .state import TicketStatus


class TicketStore:
    """Persistence helper for tickets and their structured sub-records.

    Every method runs on a session owned by the caller so that the engine can
    combine store writes and event log appends in one transaction.
    """

    async def lock_ticket(self, session: AsyncSession, ticket_id: str) -> Ticket:
        result = await session.execute(
            select(TicketTable).where(TicketTable.id == ticket_id).with_for_update()
        )
        row = result.scalars().first()
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return self._table_to_ticket(row)

    async def get_ticket(self, session: AsyncSession, ticket_id: str) -> Ticket:
        row = await session.get(TicketTable, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return self._table_to_ticket(row)

    async def next_ticket_number(self, session: AsyncSession, prefix: str) -> str:
        # Tickets are never deleted, so the row count is a gap-free sequence.
        result = await session.execute(select(func.count(TicketTable.id)))
        count = int(result.scalar_one())
        return f"{prefix}-{count + 1:04d}"

    async def insert_ticket(self, session: AsyncSession, ticket: Ticket) -> None:
        session.add(
            TicketTable(
                id=ticket.id,
                ticket_number=ticket.ticket_number,
                category_id=ticket.category_id,
                sub_category_id=ticket.sub_category_id,
                title=ticket.title,
                description=ticket.description,
                photo_ref=ticket.photo_ref,
                status=ticket.status.value,
                student_id=ticket.student_id,
                created_at=ticket.created_at,
                updated_at=ticket.updated_at,
            )
        )
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Ticket number {ticket.ticket_number} already exists") from exc

    async def set_status(
        self, session: AsyncSession, ticket_id: str, status: TicketStatus, updated_at: datetime
    ) -> Ticket:
        row = await session.get(TicketTable, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        row.status = status.value
        row.updated_at = updated_at
        if status is TicketStatus.COMPLETED:
            row.resolved_at = updated_at
        elif status is TicketStatus.CLOSED:
            row.closed_at = updated_at
        await session.flush()
        return self._table_to_ticket(row)

    async def touch_ticket(self, session: AsyncSession, ticket_id: str, updated_at: datetime) -> Ticket:
        row = await session.get(TicketTable, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        row.updated_at = updated_at
        await session.flush()
        return self._table_to_ticket(row)

    async def get_category(self, session: AsyncSession, category_id: int) -> Category | None:
        row = await session.get(TicketCategoryTable, category_id)
        if row is None:
            return None
        return Category(
            id=row.id,
            name=row.name,
            parent_id=row.parent_id,
            is_active=row.is_active,
            is_high_priority=row.is_high_priority,
        )

    async def get_staff(self, session: AsyncSession, staff_ids: Iterable[str]) -> dict[str, StaffMember]:
        ids = list(staff_ids)
        if not ids:
            return {}
        result = await session.execute(select(StaffMemberTable).where(StaffMemberTable.id.in_(ids)))
        return {row.id: self._table_to_staff(row) for row in result.scalars().all()}

    async def get_staff_member(self, session: AsyncSession, staff_id: str) -> StaffMember | None:
        row = await session.get(StaffMemberTable, staff_id)
        return self._table_to_staff(row) if row is not None else None

    async def active_assignments(self, session: AsyncSession, ticket_id: str) -> list[Assignment]:
        result = await session.execute(
            select(TicketAssignmentTable)
            .where(TicketAssignmentTable.ticket_id == ticket_id)
            .where(TicketAssignmentTable.is_active.is_(True))
            .order_by(TicketAssignmentTable.assigned_at.asc())
        )
        return [self._table_to_assignment(row) for row in result.scalars().all()]

    async def replace_assignments(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        assignees: Sequence[StaffMember],
        assigned_by: str,
        notes: str | None,
        event_seq: int | None,
        assigned_at: datetime,
    ) -> list[Assignment]:
        """Close out the active set and make ``assignees`` the new one."""

        await session.execute(
            update(TicketAssignmentTable)
            .where(TicketAssignmentTable.ticket_id == ticket_id)
            .where(TicketAssignmentTable.is_active.is_(True))
            .values(is_active=False, ended_at=assigned_at)
        )
        rows = [
            TicketAssignmentTable(
                ticket_id=ticket_id,
                assignee_id=member.id,
                assignee_role=member.role.value,
                assigned_by=assigned_by,
                notes=notes,
                is_active=True,
                event_seq=event_seq,
                assigned_at=assigned_at,
            )
            for member in assignees
        ]
        session.add_all(rows)
        await session.flush()
        return [self._table_to_assignment(row) for row in rows]

    async def insert_comment(self, session: AsyncSession, comment: Comment) -> None:
        session.add(
            TicketCommentTable(
                id=comment.id,
                ticket_id=comment.ticket_id,
                author_id=comment.author_id,
                author_kind=comment.author_kind.value,
                text=comment.text,
                is_internal=comment.is_internal,
                created_at=comment.created_at,
            )
        )
        await session.flush()

    async def list_comments(
        self, session: AsyncSession, ticket_id: str, *, include_internal: bool = True
    ) -> list[Comment]:
        statement = select(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id)
        if not include_internal:
            statement = statement.where(TicketCommentTable.is_internal.is_(False))
        result = await session.execute(statement.order_by(TicketCommentTable.created_at.asc()))
        return [self._table_to_comment(row) for row in result.scalars().all()]

    async def get_feedback(self, session: AsyncSession, ticket_id: str) -> Feedback | None:
        result = await session.execute(
            select(TicketFeedbackTable).where(TicketFeedbackTable.ticket_id == ticket_id)
        )
        row = result.scalars().first()
        return self._table_to_feedback(row) if row is not None else None

    async def insert_feedback(self, session: AsyncSession, feedback: Feedback) -> None:
        session.add(
            TicketFeedbackTable(
                id=feedback.id,
                ticket_id=feedback.ticket_id,
                student_id=feedback.student_id,
                rating=feedback.rating,
                feedback_text=feedback.feedback_text,
                created_at=feedback.created_at,
            )
        )
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Feedback already submitted for ticket {feedback.ticket_id}") from exc

    async def list_tickets(self, session: AsyncSession, filters: TicketFilters) -> TicketPage:
        conditions = []
        if filters.status is not None:
            conditions.append(TicketTable.status == filters.status.value)
        if filters.category_id is not None:
            conditions.append(TicketTable.category_id == filters.category_id)
        if filters.student_id is not None:
            conditions.append(TicketTable.student_id == filters.student_id)
        if filters.assigned_to is not None:
            assigned = (
                select(TicketAssignmentTable.ticket_id)
                .where(TicketAssignmentTable.assignee_id == filters.assigned_to)
                .where(TicketAssignmentTable.is_active.is_(True))
            )
            conditions.append(TicketTable.id.in_(assigned))
        if filters.search:
            term = filters.search.strip().lower()
            conditions.append(
                or_(
                    func.lower(TicketTable.title).contains(term, autoescape=True),
                    func.lower(TicketTable.ticket_number).contains(term, autoescape=True),
                )
            )

        total_result = await session.execute(select(func.count(TicketTable.id)).where(*conditions))
        total = int(total_result.scalar_one())

        offset = (filters.page - 1) * filters.limit
        result = await session.execute(
            select(TicketTable)
            .where(*conditions)
            .order_by(TicketTable.created_at.desc(), TicketTable.ticket_number.desc())
            .offset(offset)
            .limit(filters.limit)
        )
        tickets = [self._table_to_ticket(row) for row in result.scalars().all()]
        assignees = await self._active_assignee_ids(session, [ticket.id for ticket in tickets])
        items = [TicketSummary(ticket=ticket, assignee_ids=assignees.get(ticket.id, [])) for ticket in tickets]
        return TicketPage(items=items, total=total, page=filters.page, limit=filters.limit)

    async def _active_assignee_ids(self, session: AsyncSession, ticket_ids: Sequence[str]) -> dict[str, list[str]]:
        if not ticket_ids:
            return {}
        result = await session.execute(
            select(TicketAssignmentTable)
            .where(TicketAssignmentTable.ticket_id.in_(ticket_ids))
            .where(TicketAssignmentTable.is_active.is_(True))
            .order_by(TicketAssignmentTable.assigned_at.asc())
        )
        grouped: dict[str, list[str]] = {}
        for row in result.scalars().all():
            grouped.setdefault(row.ticket_id, []).append(row.assignee_id)
        return grouped

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            category_id=row.category_id,
            sub_category_id=row.sub_category_id,
            title=row.title,
            description=row.description,
            photo_ref=row.photo_ref,
            status=TicketStatus(row.status),
            student_id=row.student_id,
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
            resolved_at=_optional_datetime(row.resolved_at),
            closed_at=_optional_datetime(row.closed_at),
        )

    @staticmethod
    def _table_to_assignment(row: TicketAssignmentTable) -> Assignment:
        return Assignment(
            id=row.id,
            ticket_id=row.ticket_id,
            assignee_id=row.assignee_id,
            assignee_role=StaffRole(row.assignee_role),
            assigned_by=row.assigned_by,
            notes=row.notes,
            assigned_at=ensure_datetime(row.assigned_at),
            is_active=row.is_active,
            ended_at=_optional_datetime(row.ended_at),
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> Comment:
        return Comment(
            id=row.id,
            ticket_id=row.ticket_id,
            author_id=row.author_id,
            author_kind=ActorKind(row.author_kind),
            text=row.text,
            is_internal=row.is_internal,
            created_at=ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_feedback(row: TicketFeedbackTable) -> Feedback:
        return Feedback(
            id=row.id,
            ticket_id=row.ticket_id,
            student_id=row.student_id,
            rating=row.rating,
            feedback_text=row.feedback_text,
            created_at=ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_staff(row: StaffMemberTable) -> StaffMember:
        return StaffMember(id=row.id, name=row.name, role=StaffRole(row.role), is_active=row.is_active)


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else ensure_datetime(value)
