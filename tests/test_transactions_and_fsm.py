import pytest
from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError

from app.core.errors import BusinessRuleError, InvalidTransitionError, field_error
from app.fsm.engine import EXPENSE_APPROVAL_MACHINE, NOTICE_MACHINE, ORDER_MACHINE, PURCHASE_MACHINE, notice_state
from app.services.transactions import atomic


class FakeDb:
    def __init__(self):
        self.committed = False
        self.rolled_back = False

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True


def test_atomic_commits_on_success():
    db = FakeDb()

    with atomic(db, "Failed to save"):
        pass

    assert db.committed is True
    assert db.rolled_back is False


def test_atomic_maps_business_rule_to_400():
    db = FakeDb()

    with pytest.raises(HTTPException) as exc:
        with atomic(db, "Failed to save"):
            raise BusinessRuleError("Cannot delete brand with associated products")

    assert db.rolled_back is True
    assert exc.value.status_code == 400
    assert exc.value.detail == "Cannot delete brand with associated products"


def test_atomic_maps_unexpected_errors_to_500_with_message():
    db = FakeDb()

    with pytest.raises(HTTPException) as exc:
        with atomic(db, "Failed to create order"):
            raise RuntimeError("disk full")

    assert db.committed is False
    assert db.rolled_back is True
    assert exc.value.status_code == 500
    assert exc.value.detail == "Failed to create order: disk full"


@pytest.mark.parametrize(
    "error",
    [HTTPException(status_code=404, detail="Order not found"), field_error("sku", "The SKU has already been taken")],
)
def test_atomic_reraises_http_and_validation_errors(error):
    db = FakeDb()

    with pytest.raises((HTTPException, RequestValidationError)) as exc:
        with atomic(db, "Failed to save"):
            raise error

    assert exc.value is error
    assert db.rolled_back is True


def test_order_machine_walks_the_happy_path():
    state = "pending"
    for action in ("confirm", "process", "ship", "deliver"):
        state = ORDER_MACHINE.apply(state, action)

    assert state == "delivered"
    assert ORDER_MACHINE.available_actions("delivered") == []


@pytest.mark.parametrize("state", ["shipped", "delivered", "cancelled"])
def test_orders_past_processing_cannot_be_cancelled(state):
    with pytest.raises(InvalidTransitionError) as exc:
        ORDER_MACHINE.apply(state, "cancel")

    assert str(exc.value) == "Order cannot be cancelled in current status"
    assert exc.value.current == state


def test_edit_guards_keep_the_current_state():
    assert ORDER_MACHINE.apply("confirmed", "modify") == "confirmed"
    assert PURCHASE_MACHINE.apply("confirmed", "receive") == "confirmed"
    assert not PURCHASE_MACHINE.can("confirmed", "delete")


def test_expense_decisions_are_final():
    assert EXPENSE_APPROVAL_MACHINE.apply("pending", "reject") == "rejected"
    with pytest.raises(InvalidTransitionError):
        EXPENSE_APPROVAL_MACHINE.apply("rejected", "approve")


def test_notice_publication_toggles():
    assert NOTICE_MACHINE.apply(notice_state(False), "publish") == "published"
    with pytest.raises(InvalidTransitionError):
        NOTICE_MACHINE.apply(notice_state(False), "unpublish")


def test_unknown_action_is_a_programming_error():
    with pytest.raises(KeyError):
        ORDER_MACHINE.ensure("pending", "teleport")
