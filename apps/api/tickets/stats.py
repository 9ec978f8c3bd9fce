from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from opentelemetry import trace
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import TicketAssignmentTable, TicketCategoryTable, TicketTable

from .errors import TicketNotFoundError, TicketStorageError
from .events import EventLog
from .models import CategoryCount, EmployeeHistory, EmployeeStats, StatusCounts
from .state import TicketStatus
from .store import TicketStore

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)


class StatsAggregator:
    """Read-only summaries over tickets, assignments and the event log."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        store: TicketStore | None = None,
        event_log: EventLog | None = None,
        recent_limit: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._store = store or TicketStore()
        self._event_log = event_log or EventLog()
        self._recent_limit = recent_limit

    async def status_counts(self) -> StatusCounts:
        async with self._reading("status_counts") as session:
            result = await session.execute(
                select(TicketTable.status, func.count(TicketTable.id)).group_by(TicketTable.status)
            )
            rows = result.all()

        counts = {status: 0 for status in TicketStatus}
        for status, count in rows:
            counts[TicketStatus(status)] = int(count)
        return StatusCounts(counts=counts, total=sum(counts.values()))

    async def category_counts(self, limit: int = 10) -> list[CategoryCount]:
        """Top-level categories by ticket volume, largest first; unused ones count as zero."""

        ticket_count = func.count(TicketTable.id)
        async with self._reading("category_counts") as session:
            result = await session.execute(
                select(TicketCategoryTable.id, TicketCategoryTable.name, ticket_count)
                .outerjoin(TicketTable, TicketTable.category_id == TicketCategoryTable.id)
                .where(TicketCategoryTable.parent_id.is_(None))
                .group_by(TicketCategoryTable.id, TicketCategoryTable.name)
                .order_by(ticket_count.desc(), TicketCategoryTable.name.asc())
                .limit(limit)
            )
            rows = result.all()
        return [
            CategoryCount(category_id=category_id, category_name=name, count=int(count))
            for category_id, name, count in rows
        ]

    async def employee_history(self, employee_id: str, limit: int | None = None) -> EmployeeHistory:
        async with self._reading("employee_history") as session:
            employee = await self._store.get_staff_member(session, employee_id)
            if employee is None:
                raise TicketNotFoundError(f"Employee {employee_id} not found")

            # Superseded assignments count too: stats cover every ticket the employee ever held.
            assigned = (
                select(TicketAssignmentTable.ticket_id)
                .where(TicketAssignmentTable.assignee_id == employee_id)
                .distinct()
            )
            result = await session.execute(
                select(TicketTable.status, TicketCategoryTable.is_high_priority)
                .outerjoin(TicketCategoryTable, TicketCategoryTable.id == TicketTable.category_id)
                .where(TicketTable.id.in_(assigned))
            )
            rows = result.all()
            interactions = await self._event_log.recent_for_employee(
                session, employee_id, limit=limit or self._recent_limit
            )

        statuses = [(TicketStatus(status), bool(high_priority)) for status, high_priority in rows]
        stats = EmployeeStats(
            total_assigned=len(statuses),
            completed=sum(1 for status, _ in statuses if status.is_finished),
            in_progress=sum(1 for status, _ in statuses if status.is_in_progress),
            critical_pending=sum(1 for status, critical in statuses if critical and not status.is_finished),
        )
        return EmployeeHistory(employee=employee, stats=stats, interactions=interactions)

    @asynccontextmanager
    async def _reading(self, name: str) -> AsyncIterator[AsyncSession]:
        with _tracer.start_as_current_span(f"tickets.stats.{name}"):
            try:
                async with self._session_factory() as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.exception("Storage failure while computing %s", name)
                raise TicketStorageError() from exc
