"""Ticket lifecycle domain: state machine, persistence, engine and statistics."""

from .engine import EngineOptions, LifecycleEngine
from .errors import (
    ConflictError,
    EmptyCommentError,
    ForbiddenError,
    InvalidAssignmentError,
    InvalidStateError,
    TicketError,
    TicketNotFoundError,
    TicketStorageError,
    TicketValidationError,
)
from .events import EventLog
from .state import TicketStateMachine, TicketStatus
from .stats import StatsAggregator
from .store import TicketStore

__all__ = [
    "ConflictError",
    "EmptyCommentError",
    "EngineOptions",
    "EventLog",
    "ForbiddenError",
    "InvalidAssignmentError",
    "InvalidStateError",
    "LifecycleEngine",
    "StatsAggregator",
    "TicketError",
    "TicketNotFoundError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStorageError",
    "TicketStore",
    "TicketValidationError",
]
