import pytest
from fastapi import HTTPException

from apps.api.dependencies.auth import (
    Action,
    Module,
    has_permission,
    permission_required,
    resolve_actor_from_token,
    student_required,
)
from apps.api.tickets.errors import ForbiddenError
from apps.api.tickets.models import Actor, ActorKind, StaffRole

MANAGER = Actor(id="mgr-7", kind=ActorKind.STAFF, role=StaffRole.MANAGER)
WORKER = Actor(id="wrk-1", kind=ActorKind.STAFF, role=StaffRole.WORKER)
STUDENT = Actor(id="stu-1", kind=ActorKind.STUDENT)


@pytest.mark.asyncio
async def test_permission_required_allows_authorized_actor():
    dependency = permission_required(Module.EMPLOYEE_MANAGEMENT, Action.READ)
    result = await dependency(MANAGER)  # type: ignore[arg-type]
    assert result.id == "mgr-7"


@pytest.mark.asyncio
async def test_permission_required_rejects_unauthorized_actor():
    dependency = permission_required(Module.EMPLOYEE_MANAGEMENT, Action.READ)
    with pytest.raises(ForbiddenError) as exc:
        await dependency(WORKER)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.message == "Missing permission employee_management:read"


def test_students_hold_no_staff_permissions():
    for module in Module:
        for action in Action:
            assert not has_permission(STUDENT, module, action)


def test_workers_can_update_tickets():
    assert has_permission(WORKER, Module.TICKET_MANAGEMENT, Action.UPDATE)
    assert not has_permission(WORKER, Module.EMPLOYEE_MANAGEMENT, Action.READ)


@pytest.mark.asyncio
async def test_student_required_rejects_staff():
    assert (await student_required(STUDENT)) is STUDENT  # type: ignore[arg-type]
    with pytest.raises(ForbiddenError):
        await student_required(MANAGER)  # type: ignore[arg-type]


def test_resolve_actor_from_token():
    assert resolve_actor_from_token(None) is None
    assert resolve_actor_from_token("worker-token").role is StaffRole.WORKER
    with pytest.raises(HTTPException) as exc:
        resolve_actor_from_token("forged")
    assert exc.value.status_code == 401
