"""
Order and time-slot state machines.

Single source of truth for status transitions. Claim, cancel, completion and
the guarded order transition endpoint all go through ``StateMachine.attempt``
instead of comparing status strings on their own.
"""
from typing import Callable, Dict, Iterable, Mapping, Optional, Set

from ..errors import DispatchError, InvalidTransitionError
from ..models.enums import OrderStatus, SlotStatus


class StateMachine:
    def __init__(
        self,
        name: str,
        transitions: Mapping[str, Iterable[str]],
        on_enter: Optional[Callable[[object, str], None]] = None,
    ):
        self.name = name
        self.transitions: Dict[str, Set[str]] = {k: set(v) for k, v in transitions.items()}
        self.on_enter = on_enter

    @property
    def states(self) -> Set[str]:
        return set(self.transitions.keys())

    def is_terminal(self, status: str) -> bool:
        return not self.transitions.get(status)

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.transitions.get(current, set())

    def allowed_from(self, current: str) -> Set[str]:
        return set(self.transitions.get(current, set()))

    def check(
        self,
        current: str,
        target: str,
        rejections: Optional[Mapping[str, DispatchError]] = None,
        default: Optional[DispatchError] = None,
    ) -> None:
        """
        Raise if ``current -> target`` is not allowed.

        ``rejections`` maps a current status to the error raised for it, so
        each operation can report its own code (e.g. SLOT_ALREADY_CLAIMED).
        Anything else falls back to ``default`` or a generic transition error.
        """
        if self.can_transition(current, target):
            return
        if rejections and current in rejections:
            raise rejections[current]
        if default is not None:
            raise default
        raise InvalidTransitionError(
            f"Cannot move {self.name} from '{current}' to '{target}'",
            code=f"INVALID_{self.name.upper()}_TRANSITION",
            current_status=current,
            allowed=sorted(self.allowed_from(current)),
        )

    def attempt(
        self,
        entity,
        target: str,
        rejections: Optional[Mapping[str, DispatchError]] = None,
        default: Optional[DispatchError] = None,
    ) -> str:
        """Validate and apply a transition on ``entity.status``; returns the previous status."""
        previous = entity.status
        self.check(previous, target, rejections=rejections, default=default)
        entity.status = target
        if self.on_enter is not None:
            self.on_enter(entity, target)
        return previous


def _sync_slot_availability(slot, status: str) -> None:
    slot.is_available = status == SlotStatus.available.value


ORDER_MACHINE = StateMachine(
    "order",
    {
        OrderStatus.unassigned.value: [
            OrderStatus.claimed.value,
            OrderStatus.cancelled.value,
        ],
        OrderStatus.claimed.value: [
            OrderStatus.unassigned.value,   # slot cancelled
            OrderStatus.scheduled.value,
            OrderStatus.in_progress.value,
            OrderStatus.completed.value,
            OrderStatus.cancelled.value,
        ],
        OrderStatus.scheduled.value: [
            OrderStatus.unassigned.value,   # slot cancelled
            OrderStatus.in_progress.value,
            OrderStatus.completed.value,
            OrderStatus.cancelled.value,
        ],
        OrderStatus.in_progress.value: [
            OrderStatus.completed.value,
            OrderStatus.cancelled.value,
        ],
        OrderStatus.completed.value: [],    # terminal
        OrderStatus.cancelled.value: [],    # terminal
    },
)

SLOT_MACHINE = StateMachine(
    "time_slot",
    {
        SlotStatus.available.value: [SlotStatus.claimed.value, SlotStatus.cancelled.value],
        SlotStatus.claimed.value: [SlotStatus.completed.value, SlotStatus.cancelled.value],
        SlotStatus.completed.value: [],
        SlotStatus.cancelled.value: [],
    },
    on_enter=_sync_slot_availability,
)
