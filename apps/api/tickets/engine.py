from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Sequence

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.api.metrics import metrics_registry
from apps.api.metrics.base import track_duration
from apps.api.metrics.definitions import (
    TICKET_ACTION_DURATION_SECONDS,
    TICKET_ACTION_FAILURES_TOTAL,
    TICKET_ACTIONS_TOTAL,
)
from apps.api.notifications import (
    TICKET_ASSIGNED,
    TICKET_STATUS_CHANGED,
    NotificationDispatcher,
    TicketNotification,
)
from apps.api.storage import PhotoRejectedError, PhotoStorage, decode_data_url
from apps.api.storage.photos import DEFAULT_MAX_BYTES

from .errors import (
    ConflictError,
    EmptyCommentError,
    ForbiddenError,
    InvalidAssignmentError,
    InvalidStateError,
    TicketError,
    TicketStorageError,
    TicketValidationError,
)
from .events import EventLog
from .models import (
    ASSIGNABLE_ROLES,
    SYSTEM_ACTOR,
    Actor,
    ActorKind,
    Comment,
    EventKind,
    Feedback,
    Ticket,
    TicketDetail,
    TicketEvent,
    TicketFilters,
    TicketPage,
)
from .state import TicketStateMachine, TicketStatus
from .store import TicketStore

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class EngineOptions:
    """Tunables of the lifecycle engine, usually derived from settings."""

    ticket_number_prefix: str = "TCK"
    ticket_number_attempts: int = 3
    assign_advances_pending: bool = False
    default_page_size: int = 50
    max_page_size: int = 200
    photo_max_bytes: int = DEFAULT_MAX_BYTES

    @classmethod
    def from_settings(cls, settings: Any) -> "EngineOptions":
        return cls(
            ticket_number_prefix=settings.ticket_number_prefix,
            ticket_number_attempts=settings.ticket_number_attempts,
            assign_advances_pending=settings.assign_advances_pending,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
            photo_max_bytes=settings.photo_max_bytes,
        )


class LifecycleEngine:
    """Sole mutator of ticket state.

    Each action runs in a single transaction: the ticket row is locked, the
    preconditions are checked against its current state and the state change
    plus its event are written together. Notifications are scheduled only
    after the commit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        store: TicketStore | None = None,
        event_log: EventLog | None = None,
        state_machine: TicketStateMachine | None = None,
        dispatcher: NotificationDispatcher | None = None,
        photo_storage: PhotoStorage | None = None,
        options: EngineOptions | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._store = store or TicketStore()
        self._event_log = event_log or EventLog()
        self._state_machine = state_machine or TicketStateMachine()
        self._dispatcher = dispatcher
        self._photo_storage = photo_storage
        self._options = options or EngineOptions()
        self._actions = metrics_registry.counter(TICKET_ACTIONS_TOTAL, label_names=("action",))
        self._failures = metrics_registry.counter(TICKET_ACTION_FAILURES_TOTAL, label_names=("action", "kind"))
        self._duration = metrics_registry.distribution(TICKET_ACTION_DURATION_SECONDS, label_names=("action",))

    async def create_ticket(
        self,
        actor: Actor,
        *,
        category_id: int,
        title: str,
        description: str,
        sub_category_id: int | None = None,
        photo: str | None = None,
    ) -> TicketDetail:
        if not actor.is_student:
            raise ForbiddenError("Only students can raise tickets")
        title = _require_text(title, "Title")
        description = _require_text(description, "Description")

        photo_ref: str | None = None
        if photo:
            photo_ref = await self._store_photo(photo)
        try:
            detail = await self._insert_ticket(
                actor,
                category_id=category_id,
                sub_category_id=sub_category_id,
                title=title,
                description=description,
                photo_ref=photo_ref,
            )
        except Exception:
            if photo_ref is not None and self._photo_storage is not None:
                await self._photo_storage.delete(photo_ref)
            raise

        logger.info("Ticket %s created by student %s", detail.ticket.ticket_number, actor.id)
        return detail

    async def assign(
        self,
        ticket_id: str,
        actor: Actor,
        assignee_ids: Sequence[str],
        notes: str | None = None,
    ) -> TicketDetail:
        """Replace the active assignment set of a ticket with ``assignee_ids``."""

        ids = list(dict.fromkeys(value.strip() for value in assignee_ids if value and value.strip()))
        if not ids:
            raise InvalidAssignmentError("At least one user must be assigned")
        notes = _optional_text(notes)
        self._require_staff(actor, "assign tickets")

        status_change: tuple[TicketStatus, TicketStatus] | None = None
        async with self._transaction("assign") as session:
            ticket = await self._store.lock_ticket(session, ticket_id)
            staff = await self._store.get_staff(session, ids)
            rejected = [
                staff_id
                for staff_id in ids
                if staff_id not in staff
                or not staff[staff_id].is_active
                or staff[staff_id].role not in ASSIGNABLE_ROLES
            ]
            if rejected:
                raise InvalidAssignmentError(f"Unknown or unassignable staff: {', '.join(rejected)}")

            previous = [assignment.assignee_id for assignment in await self._store.active_assignments(session, ticket.id)]
            now = _utcnow()
            event = await self._event_log.append(
                session,
                TicketEvent(
                    ticket_id=ticket.id,
                    kind=EventKind.ASSIGNMENT_REPLACED,
                    actor_id=actor.id,
                    created_at=now,
                    payload={"previous": previous, "current": ids, "notes": notes},
                ),
            )
            await self._store.replace_assignments(
                session,
                ticket_id=ticket.id,
                assignees=[staff[staff_id] for staff_id in ids],
                assigned_by=actor.id,
                notes=notes,
                event_seq=event.seq,
                assigned_at=now,
            )
            if self._options.assign_advances_pending and ticket.status is TicketStatus.PENDING:
                await self._record_status(
                    session, ticket, TicketStatus.APPROACHING, actor, notes="Ticket assigned to staff", reason="assignment", now=now
                )
                status_change = (TicketStatus.PENDING, TicketStatus.APPROACHING)
            else:
                await self._store.touch_ticket(session, ticket.id, now)
            detail = await self._load_detail(session, ticket.id, include_internal=True)

        logger.info("Ticket %s assigned to %s by %s", detail.ticket.ticket_number, ids, actor.id)
        self._notify(
            TICKET_ASSIGNED,
            detail.ticket,
            actor,
            recipients=ids,
            data={"previous": previous, "current": ids, "notes": notes},
        )
        if status_change is not None:
            self._notify_status(detail, actor, *status_change, notes="Ticket assigned to staff")
        return detail

    async def change_status(
        self,
        ticket_id: str,
        actor: Actor,
        new_status: TicketStatus | str,
        notes: str | None = None,
    ) -> TicketDetail:
        target = _coerce_status(new_status)
        notes = _optional_text(notes)
        self._require_staff(actor, "change ticket status")

        async with self._transaction("change_status") as session:
            ticket = await self._store.lock_ticket(session, ticket_id)
            self._state_machine.assert_transition(ticket.status, target)
            previous = ticket.status
            await self._record_status(session, ticket, target, actor, notes=notes, reason="status_change", now=_utcnow())
            detail = await self._load_detail(session, ticket.id, include_internal=True)

        logger.info(
            "Ticket %s status %s -> %s by %s", detail.ticket.ticket_number, previous.value, target.value, actor.id
        )
        self._notify_status(detail, actor, previous, target, notes=notes)
        return detail

    async def add_comment(
        self,
        ticket_id: str,
        actor: Actor,
        text: str,
        is_internal: bool = False,
    ) -> Comment:
        body = (text or "").strip()
        if not body:
            raise EmptyCommentError("Comment text is required")

        async with self._transaction("add_comment") as session:
            ticket = await self._store.lock_ticket(session, ticket_id)
            if actor.is_student:
                if ticket.student_id != actor.id:
                    raise ForbiddenError("You can only comment on your own tickets")
                if is_internal:
                    raise ForbiddenError("Students cannot post internal comments")
            now = _utcnow()
            comment = await self._append_comment(
                session, ticket.id, author=actor, text=body, is_internal=is_internal, now=now
            )
            await self._store.touch_ticket(session, ticket.id, now)
        return comment

    async def submit_feedback(
        self,
        ticket_id: str,
        actor: Actor,
        rating: int,
        feedback_text: str | None = None,
    ) -> Feedback:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise TicketValidationError("Rating must be between 1 and 5")
        if not actor.is_student:
            raise ForbiddenError("Only the ticket's student can submit feedback")
        feedback_text = _optional_text(feedback_text)

        async with self._transaction("submit_feedback") as session:
            ticket = await self._store.lock_ticket(session, ticket_id)
            if ticket.student_id != actor.id:
                raise ForbiddenError("Only the ticket's student can submit feedback")
            if ticket.status is not TicketStatus.COMPLETED:
                raise InvalidStateError("Feedback can only be submitted for completed tickets")
            if await self._store.get_feedback(session, ticket.id) is not None:
                raise ConflictError("Feedback already submitted for this ticket")

            now = _utcnow()
            feedback = Feedback(
                id=str(uuid.uuid4()),
                ticket_id=ticket.id,
                student_id=actor.id,
                rating=rating,
                feedback_text=feedback_text,
                created_at=now,
            )
            await self._store.insert_feedback(session, feedback)
            await self._store.touch_ticket(session, ticket.id, now)

        logger.info("Feedback %d/5 recorded for ticket %s", rating, ticket.ticket_number)
        return feedback

    async def reopen(self, ticket_id: str, actor: Actor, reason: str) -> TicketDetail:
        """Send a completed, unrated ticket back to pending on the student's request."""

        if not actor.is_student:
            raise ForbiddenError("Only the ticket's student can reopen it")
        reason = (reason or "").strip()
        if not reason:
            raise TicketValidationError("A reason is required to reopen a ticket")

        async with self._transaction("reopen") as session:
            ticket = await self._store.lock_ticket(session, ticket_id)
            if ticket.student_id != actor.id:
                raise ForbiddenError("Only the ticket's student can reopen it")
            if ticket.status is not TicketStatus.COMPLETED:
                raise InvalidStateError("Only completed tickets can be reopened")
            if await self._store.get_feedback(session, ticket.id) is not None:
                raise InvalidStateError("Feedback has already been submitted for this ticket")

            now = _utcnow()
            await self._record_status(session, ticket, TicketStatus.PENDING, actor, notes=reason, reason="reopen", now=now)
            await self._append_comment(
                session,
                ticket.id,
                author=SYSTEM_ACTOR,
                text=f"Ticket reopened by student: {reason}",
                is_internal=False,
                now=now,
            )
            detail = await self._load_detail(session, ticket.id, include_internal=False)

        logger.info("Ticket %s reopened by student %s", detail.ticket.ticket_number, actor.id)
        self._notify_status(detail, actor, TicketStatus.COMPLETED, TicketStatus.PENDING, notes=reason)
        return detail

    async def get_ticket(self, ticket_id: str, actor: Actor) -> TicketDetail:
        async with self._reading() as session:
            ticket = await self._store.get_ticket(session, ticket_id)
            if actor.is_student and ticket.student_id != actor.id:
                raise ForbiddenError("Access denied. You can only view your own tickets.")
            return await self._load_detail(session, ticket.id, include_internal=not actor.is_student)

    async def list_tickets(self, filters: TicketFilters) -> TicketPage:
        filters.page = max(1, filters.page)
        filters.limit = min(max(1, filters.limit), self._options.max_page_size)
        async with self._reading() as session:
            return await self._store.list_tickets(session, filters)

    async def list_student_tickets(self, actor: Actor, *, page: int = 1, limit: int | None = None) -> TicketPage:
        if not actor.is_student:
            raise ForbiddenError("Student authentication required")
        filters = TicketFilters(student_id=actor.id, page=page, limit=limit or self._options.default_page_size)
        return await self.list_tickets(filters)

    async def _insert_ticket(
        self,
        actor: Actor,
        *,
        category_id: int,
        sub_category_id: int | None,
        title: str,
        description: str,
        photo_ref: str | None,
    ) -> TicketDetail:
        attempts = self._options.ticket_number_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with self._transaction("create_ticket") as session:
                    await self._validate_category(session, category_id, sub_category_id)
                    now = _utcnow()
                    ticket = Ticket(
                        id=str(uuid.uuid4()),
                        ticket_number=await self._store.next_ticket_number(
                            session, self._options.ticket_number_prefix
                        ),
                        category_id=category_id,
                        sub_category_id=sub_category_id,
                        title=title,
                        description=description,
                        photo_ref=photo_ref,
                        status=TicketStateMachine.initial_state(),
                        student_id=actor.id,
                        created_at=now,
                        updated_at=now,
                    )
                    await self._store.insert_ticket(session, ticket)
                    await self._event_log.append(
                        session,
                        TicketEvent(
                            ticket_id=ticket.id,
                            kind=EventKind.STATUS_CHANGED,
                            actor_id=actor.id,
                            created_at=now,
                            from_status=None,
                            to_status=ticket.status,
                            payload={"notes": None, "reason": "created"},
                        ),
                    )
                    return await self._load_detail(session, ticket.id, include_internal=False)
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.warning("Ticket number collision on attempt %d/%d, retrying", attempt, attempts)
        raise ConflictError("Could not allocate a ticket number")  # pragma: no cover - loop always returns or raises

    async def _validate_category(self, session: AsyncSession, category_id: int, sub_category_id: int | None) -> None:
        category = await self._store.get_category(session, category_id)
        if category is None or category.parent_id is not None:
            raise TicketValidationError("Invalid complaint category")
        if not category.is_active:
            raise TicketValidationError("This complaint category is not available")
        if sub_category_id is None:
            return
        sub_category = await self._store.get_category(session, sub_category_id)
        if sub_category is None or sub_category.parent_id != category_id:
            raise TicketValidationError("Invalid sub-category for selected category")
        if not sub_category.is_active:
            raise TicketValidationError("This sub-category is not available")

    async def _store_photo(self, photo: str) -> str:
        if self._photo_storage is None:
            raise TicketValidationError("Photo uploads are not enabled")
        try:
            upload = decode_data_url(photo, max_bytes=self._options.photo_max_bytes)
        except PhotoRejectedError as exc:
            raise TicketValidationError(str(exc)) from exc
        return await self._photo_storage.save(upload)

    async def _record_status(
        self,
        session: AsyncSession,
        ticket: Ticket,
        target: TicketStatus,
        actor: Actor,
        *,
        notes: str | None,
        reason: str,
        now: datetime,
    ) -> Ticket:
        await self._event_log.append(
            session,
            TicketEvent(
                ticket_id=ticket.id,
                kind=EventKind.STATUS_CHANGED,
                actor_id=actor.id,
                created_at=now,
                from_status=ticket.status,
                to_status=target,
                payload={"notes": notes, "reason": reason},
            ),
        )
        return await self._store.set_status(session, ticket.id, target, now)

    async def _append_comment(
        self,
        session: AsyncSession,
        ticket_id: str,
        *,
        author: Actor,
        text: str,
        is_internal: bool,
        now: datetime,
    ) -> Comment:
        comment = Comment(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            author_id=author.id,
            author_kind=author.kind,
            text=text,
            is_internal=is_internal,
            created_at=now,
        )
        await self._store.insert_comment(session, comment)
        await self._event_log.append(
            session,
            TicketEvent(
                ticket_id=ticket_id,
                kind=EventKind.COMMENT_ADDED,
                actor_id=author.id,
                created_at=now,
                payload={
                    "comment_id": comment.id,
                    "text": text,
                    "is_internal": is_internal,
                    "author_kind": author.kind.value,
                },
            ),
        )
        return comment

    async def _load_detail(self, session: AsyncSession, ticket_id: str, *, include_internal: bool) -> TicketDetail:
        return TicketDetail(
            ticket=await self._store.get_ticket(session, ticket_id),
            assignments=await self._store.active_assignments(session, ticket_id),
            comments=await self._store.list_comments(session, ticket_id, include_internal=include_internal),
            feedback=await self._store.get_feedback(session, ticket_id),
            history=await self._event_log.for_ticket(session, ticket_id, include_internal=include_internal),
        )

    @staticmethod
    def _require_staff(actor: Actor, action: str) -> None:
        if actor.kind is not ActorKind.STAFF:
            raise ForbiddenError(f"Only staff members can {action}")

    def _notify_status(
        self,
        detail: TicketDetail,
        actor: Actor,
        previous: TicketStatus,
        target: TicketStatus,
        *,
        notes: str | None,
    ) -> None:
        recipients = [detail.ticket.student_id, *(assignment.assignee_id for assignment in detail.assignments)]
        self._notify(
            TICKET_STATUS_CHANGED,
            detail.ticket,
            actor,
            recipients=[recipient for recipient in recipients if recipient != actor.id],
            data={"from": previous.value, "to": target.value, "notes": notes},
        )

    def _notify(
        self,
        event: str,
        ticket: Ticket,
        actor: Actor,
        *,
        recipients: Sequence[str],
        data: Mapping[str, Any],
    ) -> None:
        if self._dispatcher is None:
            return
        self._dispatcher.dispatch(
            TicketNotification(
                event=event,
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
                actor_id=actor.id,
                recipients=list(recipients),
                occurred_at=ticket.updated_at,
                data=dict(data),
            )
        )

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        labels = {"action": action}
        with _tracer.start_as_current_span(f"tickets.{action}"), track_duration(self._duration, labels=labels):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        yield session
            except TicketError as exc:
                self._failures.inc(labels={"action": action, "kind": exc.kind})
                raise
            except SQLAlchemyError as exc:
                self._failures.inc(labels={"action": action, "kind": TicketStorageError.kind})
                logger.exception("Storage failure while running ticket action %s", action)
                raise TicketStorageError() from exc
        self._actions.inc(labels=labels)

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Storage failure while reading tickets")
            raise TicketStorageError() from exc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: str | None, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise TicketValidationError(f"{label} is required")
    return text


def _optional_text(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def _coerce_status(value: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in TicketStatus)
        raise TicketValidationError(f"Status must be one of: {allowed}") from exc
