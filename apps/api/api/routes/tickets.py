from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from apps.api.core.config import get_settings
from apps.api.dependencies.auth import (
    Action,
    CurrentActor,
    CurrentStudent,
    Module,
    ensure_permission,
    permission_required,
)
from apps.api.dependencies.tickets import EngineDep, StatsDep
from apps.api.tickets.errors import ForbiddenError
from apps.api.tickets.models import (
    Actor,
    Assignment,
    Comment,
    Feedback,
    Ticket,
    TicketDetail,
    TicketEvent,
    TicketFilters,
    TicketPage,
)
from apps.api.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

_settings = get_settings()


class TicketModel(BaseModel):
    id: str
    ticket_number: str
    category_id: int
    sub_category_id: int | None = None
    title: str
    description: str
    photo_ref: str | None = None
    status: TicketStatus
    step: int
    student_id: str
    created_at: str
    updated_at: str
    resolved_at: str | None = None
    closed_at: str | None = None

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            category_id=ticket.category_id,
            sub_category_id=ticket.sub_category_id,
            title=ticket.title,
            description=ticket.description,
            photo_ref=ticket.photo_ref,
            status=ticket.status,
            step=ticket.status.step,
            student_id=ticket.student_id,
            created_at=ticket.created_at.isoformat(),
            updated_at=ticket.updated_at.isoformat(),
            resolved_at=ticket.resolved_at.isoformat() if ticket.resolved_at else None,
            closed_at=ticket.closed_at.isoformat() if ticket.closed_at else None,
        )


class AssignmentModel(BaseModel):
    id: str
    assignee_id: str
    assignee_role: str
    assigned_by: str
    notes: str | None = None
    assigned_at: str

    @classmethod
    def from_entity(cls, assignment: Assignment) -> "AssignmentModel":
        return cls(
            id=assignment.id,
            assignee_id=assignment.assignee_id,
            assignee_role=assignment.assignee_role.value,
            assigned_by=assignment.assigned_by,
            notes=assignment.notes,
            assigned_at=assignment.assigned_at.isoformat(),
        )


class CommentModel(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    author_kind: str
    text: str
    is_internal: bool
    created_at: str

    @classmethod
    def from_entity(cls, comment: Comment) -> "CommentModel":
        return cls(
            id=comment.id,
            ticket_id=comment.ticket_id,
            author_id=comment.author_id,
            author_kind=comment.author_kind.value,
            text=comment.text,
            is_internal=comment.is_internal,
            created_at=comment.created_at.isoformat(),
        )


class FeedbackModel(BaseModel):
    id: str
    ticket_id: str
    rating: int
    feedback_text: str | None = None
    created_at: str

    @classmethod
    def from_entity(cls, feedback: Feedback) -> "FeedbackModel":
        return cls(
            id=feedback.id,
            ticket_id=feedback.ticket_id,
            rating=feedback.rating,
            feedback_text=feedback.feedback_text,
            created_at=feedback.created_at.isoformat(),
        )


class TicketEventModel(BaseModel):
    seq: int | None = None
    ticket_id: str
    kind: str
    actor_id: str
    from_status: TicketStatus | None = None
    to_status: TicketStatus | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entity(cls, event: TicketEvent) -> "TicketEventModel":
        return cls(
            seq=event.seq,
            ticket_id=event.ticket_id,
            kind=event.kind.value,
            actor_id=event.actor_id,
            from_status=event.from_status,
            to_status=event.to_status,
            payload=dict(event.payload),
            created_at=event.created_at.isoformat(),
        )


class TicketDetailModel(TicketModel):
    assignments: list[AssignmentModel]
    comments: list[CommentModel]
    feedback: FeedbackModel | None = None
    history: list[TicketEventModel]

    @classmethod
    def from_detail(cls, detail: TicketDetail) -> "TicketDetailModel":
        base = TicketModel.from_entity(detail.ticket).model_dump()
        return cls(
            **base,
            assignments=[AssignmentModel.from_entity(item) for item in detail.assignments],
            comments=[CommentModel.from_entity(item) for item in detail.comments],
            feedback=FeedbackModel.from_entity(detail.feedback) if detail.feedback else None,
            history=[TicketEventModel.from_entity(item) for item in detail.history],
        )


class TicketSummaryModel(TicketModel):
    assignee_ids: list[str] = Field(default_factory=list)


class TicketPageModel(BaseModel):
    items: list[TicketSummaryModel]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def from_page(cls, page: TicketPage) -> "TicketPageModel":
        return cls(
            items=[
                TicketSummaryModel(
                    **TicketModel.from_entity(item.ticket).model_dump(),
                    assignee_ids=list(item.assignee_ids),
                )
                for item in page.items
            ],
            total=page.total,
            page=page.page,
            limit=page.limit,
            pages=page.pages,
        )


class TicketStatsModel(BaseModel):
    status_counts: dict[str, int]
    total: int
    top_categories: list[dict[str, Any]]


class TicketCreateRequest(BaseModel):
    category_id: int
    sub_category_id: int | None = None
    title: str
    description: str
    photo: str | None = Field(default=None, description="Optional image as a base64 data URL")


class AssignRequest(BaseModel):
    assigned_to: list[str] = Field(default_factory=list)
    notes: str | None = None


class StatusChangeRequest(BaseModel):
    status: str
    notes: str | None = None


class CommentCreateRequest(BaseModel):
    comment_text: str
    is_internal: bool = False


class FeedbackCreateRequest(BaseModel):
    rating: int
    feedback_text: str | None = None


@router.get(
    "",
    response_model=TicketPageModel,
    summary="List tickets for staff",
    dependencies=[Depends(permission_required(Module.TICKET_MANAGEMENT, Action.READ))],
)
async def list_tickets(
    engine: EngineDep,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    category_id: int | None = None,
    assigned_to: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_settings.default_page_size, ge=1, le=_settings.max_page_size),
) -> TicketPageModel:
    filters = TicketFilters(
        status=status_filter,
        category_id=category_id,
        assigned_to=assigned_to,
        search=search,
        page=page,
        limit=limit,
    )
    return TicketPageModel.from_page(await engine.list_tickets(filters))


@router.get("/mine", response_model=TicketPageModel, summary="List the caller's own tickets")
async def list_my_tickets(
    engine: EngineDep,
    student: CurrentStudent,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_settings.default_page_size, ge=1, le=_settings.max_page_size),
) -> TicketPageModel:
    return TicketPageModel.from_page(await engine.list_student_tickets(student, page=page, limit=limit))


@router.get(
    "/stats",
    response_model=TicketStatsModel,
    dependencies=[Depends(permission_required(Module.TICKET_MANAGEMENT, Action.READ))],
)
async def ticket_stats(stats: StatsDep, limit: int = Query(default=10, ge=1, le=100)) -> TicketStatsModel:
    counts = await stats.status_counts()
    categories = await stats.category_counts(limit=limit)
    return TicketStatsModel(
        status_counts={ticket_status.value: count for ticket_status, count in counts.counts.items()},
        total=counts.total,
        top_categories=[
            {"category_id": item.category_id, "category_name": item.category_name, "count": item.count}
            for item in categories
        ],
    )


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: str, engine: EngineDep, actor: CurrentActor) -> TicketDetailModel:
    if not actor.is_student:
        ensure_permission(actor, Module.TICKET_MANAGEMENT, Action.READ)
    return TicketDetailModel.from_detail(await engine.get_ticket(ticket_id, actor))


@router.post("", response_model=TicketDetailModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    engine: EngineDep,
    student: CurrentStudent,
) -> TicketDetailModel:
    detail = await engine.create_ticket(
        student,
        category_id=payload.category_id,
        sub_category_id=payload.sub_category_id,
        title=payload.title,
        description=payload.description,
        photo=payload.photo,
    )
    return TicketDetailModel.from_detail(detail)


@router.post("/{ticket_id}/assign", response_model=TicketDetailModel)
async def assign_ticket(
    ticket_id: str,
    payload: AssignRequest,
    engine: EngineDep,
    actor: Actor = Depends(permission_required(Module.TICKET_MANAGEMENT, Action.WRITE)),
) -> TicketDetailModel:
    detail = await engine.assign(ticket_id, actor, payload.assigned_to, notes=payload.notes)
    return TicketDetailModel.from_detail(detail)


@router.put("/{ticket_id}/status", response_model=TicketDetailModel)
async def change_ticket_status(
    ticket_id: str,
    payload: StatusChangeRequest,
    engine: EngineDep,
    actor: CurrentActor,
) -> TicketDetailModel:
    """Staff move tickets freely; a student may only send ``pending`` to reopen."""

    if actor.is_student:
        if payload.status != TicketStatus.PENDING.value:
            raise ForbiddenError("Students can only reopen their completed tickets")
        detail = await engine.reopen(ticket_id, actor, payload.notes or "")
    else:
        ensure_permission(actor, Module.TICKET_MANAGEMENT, Action.WRITE)
        detail = await engine.change_status(ticket_id, actor, payload.status, notes=payload.notes)
    return TicketDetailModel.from_detail(detail)


@router.post("/{ticket_id}/comments", response_model=CommentModel, status_code=status.HTTP_201_CREATED)
async def add_ticket_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    engine: EngineDep,
    actor: CurrentActor,
) -> CommentModel:
    if not actor.is_student:
        ensure_permission(actor, Module.TICKET_MANAGEMENT, Action.WRITE)
    comment = await engine.add_comment(ticket_id, actor, payload.comment_text, is_internal=payload.is_internal)
    return CommentModel.from_entity(comment)


@router.post("/{ticket_id}/feedback", response_model=FeedbackModel, status_code=status.HTTP_201_CREATED)
async def submit_ticket_feedback(
    ticket_id: str,
    payload: FeedbackCreateRequest,
    engine: EngineDep,
    actor: CurrentActor,
) -> FeedbackModel:
    feedback = await engine.submit_feedback(
        ticket_id, actor, payload.rating, feedback_text=payload.feedback_text
    )
    return FeedbackModel.from_entity(feedback)
