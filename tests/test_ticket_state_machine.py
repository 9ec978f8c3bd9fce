import pytest

from apps.api.tickets.errors import InvalidStateError
from apps.api.tickets.state import TicketStateMachine, TicketStatus


def test_statuses_follow_progress_order():
    assert [status.value for status in TicketStatus] == [
        "pending",
        "approaching",
        "resolving",
        "completed",
        "closed",
    ]
    assert TicketStatus.PENDING.step == 0
    assert TicketStatus.CLOSED.step == 4


def test_finished_and_in_progress_groups():
    assert TicketStatus.COMPLETED.is_finished
    assert TicketStatus.CLOSED.is_finished
    assert TicketStatus.APPROACHING.is_in_progress
    assert TicketStatus.RESOLVING.is_in_progress
    assert not TicketStatus.PENDING.is_finished
    assert not TicketStatus.PENDING.is_in_progress


def test_initial_state_is_pending():
    assert TicketStateMachine.initial_state() is TicketStatus.PENDING


def test_permissive_machine_allows_reverting():
    machine = TicketStateMachine()
    assert not machine.is_strict
    assert machine.can_transition(TicketStatus.COMPLETED, TicketStatus.RESOLVING)
    assert machine.can_transition(TicketStatus.CLOSED, TicketStatus.PENDING)


def test_strict_machine_rejects_reopening_closed_tickets():
    machine = TicketStateMachine(strict=True)
    assert machine.is_strict
    assert machine.can_transition(TicketStatus.RESOLVING, TicketStatus.COMPLETED)
    assert not machine.can_transition(TicketStatus.CLOSED, TicketStatus.PENDING)
    with pytest.raises(InvalidStateError, match="from pending to completed"):
        machine.assert_transition(TicketStatus.PENDING, TicketStatus.COMPLETED)


def test_same_status_is_always_allowed():
    machine = TicketStateMachine(strict=True)
    assert machine.can_transition(TicketStatus.CLOSED, TicketStatus.CLOSED)


def test_custom_transition_table():
    machine = TicketStateMachine({TicketStatus.PENDING: (TicketStatus.CLOSED,)})
    assert machine.can_transition(TicketStatus.PENDING, TicketStatus.CLOSED)
    assert not machine.can_transition(TicketStatus.PENDING, TicketStatus.APPROACHING)
