from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence

from .errors import InvalidStateError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle, in progress order."""

    PENDING = "pending"
    APPROACHING = "approaching"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    CLOSED = "closed"

    @property
    def step(self) -> int:
        """Position of the status on the progress indicator."""

        return _ORDER.index(self)

    @property
    def is_finished(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CLOSED)

    @property
    def is_in_progress(self) -> bool:
        return self in (TicketStatus.APPROACHING, TicketStatus.RESOLVING)


_ORDER: tuple[TicketStatus, ...] = tuple(TicketStatus)


class TicketStateMachine:
    """Validate staff-driven status transitions.

    Without a transition table every status may move to every other status so
    administrators can revert mistakes. Passing ``strict=True`` installs the
    default table; a custom table can be supplied as well.
    """

    STRICT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.PENDING: (TicketStatus.APPROACHING, TicketStatus.RESOLVING, TicketStatus.CLOSED),
        TicketStatus.APPROACHING: (TicketStatus.PENDING, TicketStatus.RESOLVING, TicketStatus.CLOSED),
        TicketStatus.RESOLVING: (TicketStatus.APPROACHING, TicketStatus.COMPLETED, TicketStatus.CLOSED),
        TicketStatus.COMPLETED: (TicketStatus.RESOLVING, TicketStatus.CLOSED),
        TicketStatus.CLOSED: (),
    }

    def __init__(
        self,
        transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None,
        *,
        strict: bool = False,
    ) -> None:
        if transitions is None and strict:
            transitions = self.STRICT_TRANSITIONS
        self._transitions = transitions

    @property
    def is_strict(self) -> bool:
        return self._transitions is not None

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if current == target or self._transitions is None:
            return True
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateError(f"Cannot move ticket from {current.value} to {target.value}")
