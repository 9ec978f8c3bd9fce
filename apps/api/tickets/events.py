from __future__ import annotations

from dataclasses import replace
from typing import Any

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from packages.db.models import TicketAssignmentTable, TicketEventTable, TicketTable

from .models import EventKind, Interaction, TicketEvent
from .state import TicketStatus
from .store import ensure_datetime


class EventLog:
    """Append-only per-ticket history.

    Appended events are only ever read back, ordered by timestamp with the
    insertion sequence breaking ties.
    """

    async def append(self, session: AsyncSession, event: TicketEvent) -> TicketEvent:
        row = TicketEventTable(
            ticket_id=event.ticket_id,
            kind=event.kind.value,
            actor_id=event.actor_id,
            from_status=event.from_status.value if event.from_status else None,
            to_status=event.to_status.value if event.to_status else None,
            payload=dict(event.payload),
            created_at=event.created_at,
        )
        session.add(row)
        await session.flush()
        return replace(event, seq=row.seq)

    async def for_ticket(
        self, session: AsyncSession, ticket_id: str, *, include_internal: bool = True
    ) -> list[TicketEvent]:
        result = await session.execute(
            select(TicketEventTable)
            .where(TicketEventTable.ticket_id == ticket_id)
            .order_by(TicketEventTable.created_at.asc(), TicketEventTable.seq.asc())
        )
        events = [self._table_to_event(row) for row in result.scalars().all()]
        if include_internal:
            return events
        return [event for event in events if not event.is_internal]

    async def recent_for_employee(
        self, session: AsyncSession, employee_id: str, *, limit: int = 50
    ) -> list[Interaction]:
        """Events authored by the employee or assignments that bound them, newest first."""

        bound = select(TicketAssignmentTable.event_seq).where(
            TicketAssignmentTable.assignee_id == employee_id
        )
        result = await session.execute(
            select(TicketEventTable, TicketTable)
            .join(TicketTable, TicketTable.id == TicketEventTable.ticket_id)
            .where(or_(TicketEventTable.actor_id == employee_id, TicketEventTable.seq.in_(bound)))
            .order_by(TicketEventTable.created_at.desc(), TicketEventTable.seq.desc())
            .limit(limit)
        )
        return [
            Interaction(
                event=self._table_to_event(event_row),
                ticket_number=ticket_row.ticket_number,
                ticket_title=ticket_row.title,
                ticket_status=TicketStatus(ticket_row.status),
            )
            for event_row, ticket_row in result.all()
        ]

    @staticmethod
    def _table_to_event(row: TicketEventTable) -> TicketEvent:
        payload: dict[str, Any] = dict(row.payload or {})
        return TicketEvent(
            seq=row.seq,
            ticket_id=row.ticket_id,
            kind=EventKind(row.kind),
            actor_id=row.actor_id,
            from_status=TicketStatus(row.from_status) if row.from_status else None,
            to_status=TicketStatus(row.to_status) if row.to_status else None,
            payload=payload,
            created_at=ensure_datetime(row.created_at),
        )
