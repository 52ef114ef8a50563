from types import SimpleNamespace

import pytest

from fieldhub.errors import ConflictError, InvalidTransitionError
from fieldhub.services.state_machine import ORDER_MACHINE, SLOT_MACHINE


pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("unassigned", "claimed", True),
        ("unassigned", "cancelled", True),
        ("unassigned", "completed", False),
        ("claimed", "unassigned", True),
        ("claimed", "completed", True),
        ("scheduled", "in_progress", True),
        ("in_progress", "unassigned", False),
        ("completed", "cancelled", False),
        ("cancelled", "unassigned", False),
    ],
)
def test_order_transition_table(current, target, allowed):
    assert ORDER_MACHINE.can_transition(current, target) is allowed


def test_terminal_states():
    assert ORDER_MACHINE.is_terminal("completed")
    assert ORDER_MACHINE.is_terminal("cancelled")
    assert not ORDER_MACHINE.is_terminal("in_progress")
    assert SLOT_MACHINE.is_terminal("completed")
    assert SLOT_MACHINE.is_terminal("cancelled")
    assert not SLOT_MACHINE.is_terminal("claimed")


def test_check_raises_generic_transition_error():
    with pytest.raises(InvalidTransitionError) as exc:
        ORDER_MACHINE.check("completed", "unassigned")
    assert exc.value.code == "INVALID_ORDER_TRANSITION"
    assert exc.value.extra["current_status"] == "completed"
    assert exc.value.extra["allowed"] == []


def test_check_prefers_operation_specific_rejection():
    taken = ConflictError("taken", code="SLOT_ALREADY_CLAIMED")
    with pytest.raises(ConflictError) as exc:
        SLOT_MACHINE.check("claimed", "claimed", rejections={"claimed": taken})
    assert exc.value.code == "SLOT_ALREADY_CLAIMED"

    fallback = ConflictError("nope", code="SLOT_NOT_AVAILABLE")
    with pytest.raises(ConflictError) as exc:
        SLOT_MACHINE.check("cancelled", "claimed", rejections={"claimed": taken}, default=fallback)
    assert exc.value.code == "SLOT_NOT_AVAILABLE"


def test_slot_attempt_keeps_is_available_in_sync():
    slot = SimpleNamespace(status="available", is_available=True)

    previous = SLOT_MACHINE.attempt(slot, "claimed")
    assert previous == "available"
    assert slot.status == "claimed"
    assert slot.is_available is False

    SLOT_MACHINE.attempt(slot, "completed")
    assert slot.is_available is False

    with pytest.raises(InvalidTransitionError):
        SLOT_MACHINE.attempt(slot, "cancelled")
    assert slot.status == "completed"
