from __future__ import annotations

from typing import Literal


STATUS_CREATED = "Created"
STATUS_PICKED_UP = "PickedUp"
STATUS_IN_TRANSIT = "InTransit"
STATUS_OUT_FOR_DELIVERY = "OutForDelivery"
STATUS_DELIVERED = "Delivered"
STATUS_CANCELLED = "Cancelled"

ShipmentStatus = Literal[
    "Created",
    "PickedUp",
    "InTransit",
    "OutForDelivery",
    "Delivered",
    "Cancelled",
]

# Forward-only delivery path; Cancelled is added for every non-terminal state below.
STATUS_FLOW: tuple[str, ...] = (
    STATUS_CREATED,
    STATUS_PICKED_UP,
    STATUS_IN_TRANSIT,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_DELIVERED,
)
ALL_STATUSES = frozenset((*STATUS_FLOW, STATUS_CANCELLED))
TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED})

SERVICE_STANDARD = "Standard"
SERVICE_EXPRESS = "Express"
SERVICE_OVERNIGHT = "Overnight"

ServiceType = Literal["Standard", "Express", "Overnight"]

SERVICE_TYPES = frozenset({SERVICE_STANDARD, SERVICE_EXPRESS, SERVICE_OVERNIGHT})


def _build_transitions() -> dict[str, frozenset[str]]:
    transitions: dict[str, frozenset[str]] = {}
    for index, status in enumerate(STATUS_FLOW):
        if status in TERMINAL_STATUSES:
            transitions[status] = frozenset()
            continue
        transitions[status] = frozenset({STATUS_FLOW[index + 1], STATUS_CANCELLED})
    transitions[STATUS_CANCELLED] = frozenset()
    return transitions


TRANSITIONS: dict[str, frozenset[str]] = _build_transitions()


def allowed_transitions(current: str) -> frozenset[str]:
    # Unknown stored statuses have no legal successors.
    return TRANSITIONS.get(current, frozenset())


def can_transition(current: str, new: str) -> bool:
    return new in allowed_transitions(current)


def next_status(current: str) -> str | None:
    # Next step on the delivery path, ignoring cancellation.
    if current in TERMINAL_STATUSES or current not in STATUS_FLOW:
        return None
    return STATUS_FLOW[STATUS_FLOW.index(current) + 1]


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
