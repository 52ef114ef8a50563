from enum import Enum


class OrderStatus(str, Enum):
    unassigned = "unassigned"
    claimed = "claimed"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class SlotStatus(str, Enum):
    available = "available"
    claimed = "claimed"
    completed = "completed"
    cancelled = "cancelled"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class InventoryStatus(str, Enum):
    pending = "pending"
    available = "available"
    unavailable = "unavailable"
    partial = "partial"


class ServiceType(str, Enum):
    installation = "Installation"
    delivery = "Delivery"
    repair = "Repair"


class EventType(str, Enum):
    ghost_job = "ghost_job"
    double_book = "double_book"
    cancellation = "cancellation"
    completion = "completion"


# urgent first
PRIORITY_RANK = {
    Priority.urgent.value: 1,
    Priority.high.value: 2,
    Priority.medium.value: 3,
    Priority.low.value: 4,
}


def values(enum_cls) -> list:
    return [member.value for member in enum_cls]
