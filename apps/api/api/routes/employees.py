from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from apps.api.api.routes.tickets import TicketEventModel
from apps.api.dependencies.auth import Action, Module, permission_required
from apps.api.dependencies.tickets import StatsDep
from apps.api.tickets.models import EmployeeHistory
from apps.api.tickets.state import TicketStatus

router = APIRouter(prefix="/employees", tags=["employees"])


class EmployeeModel(BaseModel):
    id: str
    name: str
    role: str
    is_active: bool


class EmployeeStatsModel(BaseModel):
    total_assigned: int
    completed: int
    in_progress: int
    critical_pending: int


class InteractionModel(BaseModel):
    event: TicketEventModel
    ticket_number: str
    ticket_title: str
    ticket_status: TicketStatus


class EmployeeHistoryModel(BaseModel):
    employee: EmployeeModel
    stats: EmployeeStatsModel
    interactions: list[InteractionModel]

    @classmethod
    def from_history(cls, history: EmployeeHistory) -> "EmployeeHistoryModel":
        return cls(
            employee=EmployeeModel(
                id=history.employee.id,
                name=history.employee.name,
                role=history.employee.role.value,
                is_active=history.employee.is_active,
            ),
            stats=EmployeeStatsModel(
                total_assigned=history.stats.total_assigned,
                completed=history.stats.completed,
                in_progress=history.stats.in_progress,
                critical_pending=history.stats.critical_pending,
            ),
            interactions=[
                InteractionModel(
                    event=TicketEventModel.from_entity(item.event),
                    ticket_number=item.ticket_number,
                    ticket_title=item.ticket_title,
                    ticket_status=item.ticket_status,
                )
                for item in history.interactions
            ],
        )


@router.get(
    "/{employee_id}/history",
    response_model=EmployeeHistoryModel,
    summary="Assignment statistics and recent ticket activity of an employee",
    dependencies=[Depends(permission_required(Module.EMPLOYEE_MANAGEMENT, Action.READ))],
)
async def employee_history(employee_id: str, stats: StatsDep) -> EmployeeHistoryModel:
    return EmployeeHistoryModel.from_history(await stats.employee_history(employee_id))
