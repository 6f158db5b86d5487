from __future__ import annotations

from fastapi.exceptions import RequestValidationError


class BusinessRuleError(ValueError):
    """Operation rejected by a business rule; rendered as HTTP 400."""


class InvalidTransitionError(BusinessRuleError):
    def __init__(self, entity: str, action: str, current: str | None) -> None:
        self.entity = entity
        self.action = action
        self.current = current
        super().__init__(f"{entity.capitalize()} cannot be {_past_tense(action)} in current status")


class TenantScopeError(RuntimeError):
    """A tenant-owned query was attempted without an active tenant."""


def _past_tense(action: str) -> str:
    irregular = {
        "ship": "shipped",
        "pay": "marked as paid",
        "cancel": "cancelled",
        "process": "processed",
        "modify": "modified",
    }
    if action in irregular:
        return irregular[action]
    if action.endswith("e"):
        return f"{action}d"
    return f"{action}ed"


def field_error(field: str, message: str) -> RequestValidationError:
    """A 422 carrying a single field message, for checks that need the database."""
    return field_errors({field: message})


def field_errors(messages: dict[str, str]) -> RequestValidationError:
    return RequestValidationError(
        [
            {"type": "value_error", "loc": ("body", field), "msg": message, "input": None}
            for field, message in messages.items()
        ]
    )
