from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apps.api.tickets.errors import ForbiddenError
from apps.api.tickets.models import Actor, ActorKind, StaffRole


class Module(str, Enum):
    """Permission modules guarded by the RBAC layer."""

    TICKET_MANAGEMENT = "ticket_management"
    EMPLOYEE_MANAGEMENT = "employee_management"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    UPDATE = "update"


ROLE_PERMISSIONS: dict[StaffRole, dict[Module, frozenset[Action]]] = {
    StaffRole.ADMIN: {
        Module.TICKET_MANAGEMENT: frozenset(Action),
        Module.EMPLOYEE_MANAGEMENT: frozenset(Action),
    },
    StaffRole.MANAGER: {
        Module.TICKET_MANAGEMENT: frozenset(Action),
        Module.EMPLOYEE_MANAGEMENT: frozenset({Action.READ}),
    },
    StaffRole.WORKER: {
        Module.TICKET_MANAGEMENT: frozenset(Action),
    },
}


def has_permission(actor: Actor, module: Module, action: Action) -> bool:
    """Students and system actors hold no staff permissions."""

    if actor.kind is not ActorKind.STAFF or actor.role is None:
        return False
    return action in ROLE_PERMISSIONS.get(actor.role, {}).get(module, frozenset())


TOKEN_ACTOR_MAP: dict[str, Actor] = {
    "student-token": Actor(id="student-1", kind=ActorKind.STUDENT, name="Student One"),
    "student2-token": Actor(id="student-2", kind=ActorKind.STUDENT, name="Student Two"),
    "admin-token": Actor(id="admin-1", kind=ActorKind.STAFF, name="Admin", role=StaffRole.ADMIN),
    "manager-token": Actor(id="manager-1", kind=ActorKind.STAFF, name="Manager", role=StaffRole.MANAGER),
    "worker-token": Actor(id="worker-1", kind=ActorKind.STAFF, name="Worker", role=StaffRole.WORKER),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(token: str | None) -> Actor | None:
    """Return the actor bound to ``token``; anonymous callers resolve to ``None``."""

    if token is None:
        return None

    actor = TOKEN_ACTOR_MAP.get(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Static token lookup standing in for the campus identity provider."""

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    request.state.actor = actor
    return actor


def ensure_permission(actor: Actor, module: Module, action: Action) -> Actor:
    if not has_permission(actor, module, action):
        raise ForbiddenError(f"Missing permission {module.value}:{action.value}")
    return actor


def permission_required(module: Module, action: Action) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds ``module:action``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        return ensure_permission(actor, module, action)

    return dependency


async def student_required(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    if not actor.is_student:
        raise ForbiddenError("Student authentication required")
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CurrentStudent = Annotated[Actor, Depends(student_required)]
