"""Error taxonomy shared by the ticket engine and the HTTP layer."""

from __future__ import annotations


class TicketError(RuntimeError):
    """Base error for ticket lifecycle failures.

    ``kind`` is the stable machine-readable code returned to callers and
    ``status_code`` the HTTP status the API layer maps it to.
    """

    kind = "ticket_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class TicketNotFoundError(TicketError):
    """Raised when an operation targets an unknown ticket or employee."""

    kind = "not_found"
    status_code = 404


class InvalidAssignmentError(TicketError):
    """Raised when an assignee list is empty or names unknown staff."""

    kind = "invalid_assignment"
    status_code = 400


class InvalidStateError(TicketError):
    """Raised when the action is not permitted in the ticket's current status."""

    kind = "invalid_state"
    status_code = 409


class ForbiddenError(TicketError):
    """Raised when the actor is not entitled to act on the ticket."""

    kind = "forbidden"
    status_code = 403


class ConflictError(TicketError):
    """Raised on duplicate feedback or ticket number collisions."""

    kind = "conflict"
    status_code = 409


class TicketValidationError(TicketError):
    """Raised when user supplied values are blank or out of range."""

    kind = "validation_error"
    status_code = 400


class EmptyCommentError(TicketValidationError):
    kind = "empty_comment"


class TicketStorageError(TicketError):
    """Opaque wrapper for unexpected storage failures."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "Internal storage error") -> None:
        super().__init__(message)
