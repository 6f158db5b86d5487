"""Explicit transition tables for the stateful entities.

An action maps to the states it may start from and the state it leads to.
A ``None`` target keeps the current state (edit and delete guards) or lets
the caller compute it (partial purchase receipts).
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.errors import InvalidTransitionError
from app.fsm import states


@dataclass(frozen=True)
class Transition:
    sources: frozenset[str]
    target: str | None = None


class StateMachine:
    def __init__(self, entity: str, transitions: dict[str, Transition]) -> None:
        self.entity = entity
        self.transitions = transitions

    def can(self, current: str | None, action: str) -> bool:
        transition = self.transitions.get(action)
        return transition is not None and current in transition.sources

    def ensure(self, current: str | None, action: str) -> Transition:
        if action not in self.transitions:
            raise KeyError(f"Unknown {self.entity} action: {action}")
        if not self.can(current, action):
            raise InvalidTransitionError(self.entity, action, current)
        return self.transitions[action]

    def apply(self, current: str | None, action: str) -> str | None:
        """Validate ``action`` from ``current`` and return the resulting state."""
        transition = self.ensure(current, action)
        return transition.target if transition.target is not None else current

    def available_actions(self, current: str | None) -> list[str]:
        return [action for action, transition in self.transitions.items() if current in transition.sources]


def _from(*names: str) -> frozenset[str]:
    return frozenset(names)


ORDER_MACHINE = StateMachine(
    "order",
    {
        "confirm": Transition(_from(states.ORDER_PENDING), states.ORDER_CONFIRMED),
        "process": Transition(_from(states.ORDER_CONFIRMED), states.ORDER_PROCESSING),
        "ship": Transition(_from(states.ORDER_CONFIRMED, states.ORDER_PROCESSING), states.ORDER_SHIPPED),
        "deliver": Transition(_from(states.ORDER_SHIPPED), states.ORDER_DELIVERED),
        "cancel": Transition(
            _from(states.ORDER_PENDING, states.ORDER_CONFIRMED, states.ORDER_PROCESSING),
            states.ORDER_CANCELLED,
        ),
        "modify": Transition(_from(states.ORDER_PENDING, states.ORDER_CONFIRMED)),
        "delete": Transition(_from(states.ORDER_PENDING)),
    },
)

PURCHASE_MACHINE = StateMachine(
    "purchase",
    {
        "confirm": Transition(_from(states.PURCHASE_DRAFT, states.PURCHASE_PENDING), states.PURCHASE_CONFIRMED),
        "cancel": Transition(
            _from(states.PURCHASE_DRAFT, states.PURCHASE_PENDING, states.PURCHASE_CONFIRMED),
            states.PURCHASE_CANCELLED,
        ),
        "receive": Transition(_from(states.PURCHASE_CONFIRMED, states.PURCHASE_PARTIALLY_RECEIVED)),
        "modify": Transition(_from(states.PURCHASE_DRAFT, states.PURCHASE_PENDING)),
        "delete": Transition(_from(states.PURCHASE_DRAFT)),
    },
)

EXPENSE_APPROVAL_MACHINE = StateMachine(
    "expense",
    {
        "approve": Transition(_from(states.APPROVAL_PENDING), states.APPROVAL_APPROVED),
        "reject": Transition(_from(states.APPROVAL_PENDING), states.APPROVAL_REJECTED),
        "modify": Transition(_from(states.APPROVAL_PENDING)),
        "delete": Transition(_from(states.APPROVAL_PENDING)),
    },
)

EXPENSE_PAYMENT_MACHINE = StateMachine(
    "expense",
    {
        "pay": Transition(_from(states.PAYMENT_PENDING, states.PAYMENT_OVERDUE), states.PAYMENT_PAID),
    },
)

NOTICE_MACHINE = StateMachine(
    "notice",
    {
        "publish": Transition(_from(states.NOTICE_DRAFT), states.NOTICE_PUBLISHED),
        "unpublish": Transition(_from(states.NOTICE_PUBLISHED), states.NOTICE_DRAFT),
    },
)


def notice_state(is_published: bool) -> str:
    return states.NOTICE_PUBLISHED if is_published else states.NOTICE_DRAFT
