"""
Status state machines for donations, relief requests, matches and deliveries.

Every status change in the services goes through one of the machines below,
so the allowed transitions live in exactly one place.
"""

from enum import Enum
from typing import Iterable, Mapping, Optional

from errors import PreconditionFailed, ValidationError
from models import DeliveryStatus, DonationStatus, MatchStatus, RequestStatus


class StateMachine:
    def __init__(self, entity: str, transitions: Mapping[Enum, Iterable[Enum]]):
        self.entity = entity
        self.transitions = {state: frozenset(targets) for state, targets in transitions.items()}
        self.states = list(self.transitions)

    def can(self, current: Enum, target: Enum) -> bool:
        return target in self.transitions.get(current, frozenset())

    def sources_for(self, target: Enum) -> list[Enum]:
        """States from which `target` is reachable, in declaration order."""
        return [state for state in self.states if target in self.transitions[state]]

    def is_terminal(self, state: Enum) -> bool:
        return not self.transitions.get(state)

    def check(self, current: Enum, target: Enum, action: Optional[str] = None) -> None:
        """Raise PreconditionFailed unless `current -> target` is allowed."""
        if self.can(current, target):
            return
        allowed = self.sources_for(target)
        valid = ", ".join(s.value for s in allowed) or "none"
        if action:
            message = (
                f"{self.entity} status '{current.value}' is not eligible for {action}. "
                f"Valid statuses: {valid}"
            )
        else:
            message = (
                f"{self.entity} cannot move from '{current.value}' to '{target.value}'. "
                f"Valid statuses: {valid}"
            )
        raise PreconditionFailed(message, current=current, allowed=allowed)

    def parse(self, value: str) -> Enum:
        """Convert a raw status string, rejecting unknown values."""
        for state in self.states:
            if state.value == value:
                return state
        valid = ", ".join(s.value for s in self.states)
        raise ValidationError(f"Invalid status. Valid options: {valid}")


DONATION = StateMachine(
    "Donation",
    {
        DonationStatus.PENDING_VALIDATION: {
            DonationStatus.AVAILABLE,
            DonationStatus.MATCHED,
            DonationStatus.CANCELLED,
            DonationStatus.REJECTED,
        },
        DonationStatus.AVAILABLE: {DonationStatus.MATCHED, DonationStatus.CANCELLED},
        DonationStatus.MATCHED: set(),
        DonationStatus.CANCELLED: set(),
        DonationStatus.REJECTED: set(),
    },
)

REQUEST = StateMachine(
    "Request",
    {
        RequestStatus.PENDING_VALIDATION: {
            RequestStatus.ACTIVE,
            RequestStatus.PARTIALLY_MATCHED,
            RequestStatus.CANCELLED,
        },
        RequestStatus.ACTIVE: {
            RequestStatus.PARTIALLY_MATCHED,
            RequestStatus.FULFILLED,
            RequestStatus.CANCELLED,
        },
        # a request keeps collecting matches until fulfilled
        RequestStatus.PARTIALLY_MATCHED: {
            RequestStatus.PARTIALLY_MATCHED,
            RequestStatus.FULFILLED,
            RequestStatus.CANCELLED,
        },
        RequestStatus.FULFILLED: set(),
        RequestStatus.CANCELLED: set(),
    },
)

MATCH = StateMachine(
    "Match",
    {
        MatchStatus.SUGGESTED: {MatchStatus.ASSIGNED, MatchStatus.CANCELLED},
        MatchStatus.ASSIGNED: {MatchStatus.ASSIGNED, MatchStatus.COMPLETED, MatchStatus.CANCELLED},
        MatchStatus.COMPLETED: set(),
        MatchStatus.CANCELLED: set(),
    },
)

DELIVERY_STAGES = [
    DeliveryStatus.PENDING_ASSIGNMENT,
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.IN_TRANSIT_TO_PICKUP,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT_TO_DELIVERY,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.COMPLETED,
]


def _delivery_transitions() -> dict:
    # Forward-only: a stage may repeat (location pings) or jump ahead, never go back.
    transitions = {}
    for index, stage in enumerate(DELIVERY_STAGES):
        if stage == DeliveryStatus.COMPLETED:
            transitions[stage] = set()
        else:
            transitions[stage] = set(DELIVERY_STAGES[index:]) | {DeliveryStatus.CANCELLED}
    transitions[DeliveryStatus.CANCELLED] = set()
    return transitions


DELIVERY = StateMachine("Delivery", _delivery_transitions())
