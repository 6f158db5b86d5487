from __future__ import annotations

from typing import Any

from sqlalchemy import func

from app.core.database import utcnow
from app.core.errors import BusinessRuleError, InvalidTransitionError
from app.fsm import states
from app.fsm.engine import EXPENSE_APPROVAL_MACHINE, EXPENSE_PAYMENT_MACHINE
from app.models.expense import Expense
from app.models.shop import Shop
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.audit import record_audit
from app.services.numbering import next_document_number
from app.services.serializers import snapshot
from app.services.tenant_context import RequestContext, ensure_tenant_reference, scoped_query

COMMON_CATEGORIES = (
    "rent",
    "utilities",
    "salaries",
    "supplies",
    "maintenance",
    "marketing",
    "transport",
    "insurance",
    "taxes",
    "other",
)


def _validate_references(ctx: RequestContext, data: dict[str, Any]) -> None:
    ensure_tenant_reference(ctx, Shop, data.get("shop_id"), "Shop")
    ensure_tenant_reference(ctx, Warehouse, data.get("warehouse_id"), "Warehouse")


def overdue_filter():
    return (
        Expense.payment_status != states.PAYMENT_PAID,
        Expense.due_date.isnot(None),
        Expense.due_date < utcnow().date(),
    )


def create_expense(ctx: RequestContext, data: dict[str, Any]) -> Expense:
    tenant_id = ctx.require_tenant()
    _validate_references(ctx, data)
    expense = Expense(
        tenant_id=tenant_id,
        expense_number=next_document_number(ctx, Expense, "expense_number", "EXP"),
        approval_status=states.APPROVAL_PENDING,
        payment_status=states.PAYMENT_PENDING,
        created_by=ctx.user_id,
        **data,
    )
    ctx.db.add(expense)
    ctx.db.flush()
    record_audit(ctx, "expense_created", table_name="expenses", record_id=expense.id, new_values=snapshot(expense))
    dashboard.invalidate(tenant_id)
    return expense


def update_expense(ctx: RequestContext, expense: Expense, changes: dict[str, Any]) -> Expense:
    EXPENSE_APPROVAL_MACHINE.ensure(expense.approval_status, "modify")
    _validate_references(ctx, changes)
    old_values = snapshot(expense)
    for field, value in changes.items():
        setattr(expense, field, value)
    if expense.due_date and expense.expense_date and expense.due_date < expense.expense_date:
        raise BusinessRuleError("Due date must be on or after the expense date")
    ctx.db.flush()
    record_audit(
        ctx,
        "expense_updated",
        table_name="expenses",
        record_id=expense.id,
        old_values=old_values,
        new_values=snapshot(expense),
    )
    dashboard.invalidate(expense.tenant_id)
    return expense


def delete_expense(ctx: RequestContext, expense: Expense) -> None:
    EXPENSE_APPROVAL_MACHINE.ensure(expense.approval_status, "delete")
    deleted = snapshot(expense)
    ctx.db.delete(expense)
    ctx.db.flush()
    record_audit(ctx, "expense_deleted", table_name="expenses", record_id=deleted["id"], old_values=deleted)
    dashboard.invalidate(deleted["tenant_id"])


def decide_expense(ctx: RequestContext, expense: Expense, action: str, *, reason: str | None = None) -> Expense:
    """Approve or reject a pending expense; any other state raises and is left untouched."""
    previous = expense.approval_status
    expense.approval_status = EXPENSE_APPROVAL_MACHINE.apply(previous, action)
    expense.approved_by = ctx.user_id
    expense.approved_at = utcnow()
    ctx.db.flush()
    new_values: dict[str, Any] = {"approval_status": expense.approval_status}
    if reason:
        new_values["reason"] = reason
    record_audit(
        ctx,
        f"expense_{expense.approval_status}",
        table_name="expenses",
        record_id=expense.id,
        old_values={"approval_status": previous},
        new_values=new_values,
    )
    dashboard.invalidate(expense.tenant_id)
    return expense


def pay_expense(ctx: RequestContext, expense: Expense, payment_method: str) -> Expense:
    if expense.approval_status != states.APPROVAL_APPROVED:
        raise InvalidTransitionError("expense", "pay", expense.payment_status)
    previous = expense.payment_status
    expense.payment_status = EXPENSE_PAYMENT_MACHINE.apply(previous, "pay")
    expense.payment_method = payment_method
    expense.paid_at = utcnow()
    ctx.db.flush()
    record_audit(
        ctx,
        "expense_payment_made",
        table_name="expenses",
        record_id=expense.id,
        old_values={"payment_status": previous},
        new_values={"payment_status": expense.payment_status, "payment_method": payment_method},
    )
    dashboard.invalidate(expense.tenant_id)
    return expense


def bulk_approve(ctx: RequestContext, expense_ids: list[int]) -> list[str]:
    wanted = set(expense_ids)
    expenses = (
        scoped_query(ctx, Expense)
        .filter(Expense.id.in_(wanted), Expense.approval_status == states.APPROVAL_PENDING)
        .all()
    )
    if len(expenses) != len(wanted):
        raise BusinessRuleError("Some expenses not found, do not belong to tenant, or are not pending")

    results = []
    for expense in expenses:
        expense.approval_status = EXPENSE_APPROVAL_MACHINE.apply(expense.approval_status, "approve")
        expense.approved_by = ctx.user_id
        expense.approved_at = utcnow()
        results.append(f"Expense {expense.expense_number} approved")
    ctx.db.flush()
    record_audit(
        ctx,
        "bulk_expense_approval",
        table_name="expenses",
        new_values={"expense_ids": sorted(wanted), "results": results},
    )
    dashboard.invalidate(ctx.tenant_id)
    return results


def _sum_amount(query) -> float:
    return round(float(query.with_entities(func.coalesce(func.sum(Expense.amount), 0)).scalar() or 0), 2)


def expense_stats(query) -> dict[str, Any]:
    """Counts and amounts by status and category over an already scoped query."""
    pending = query.filter(Expense.approval_status == states.APPROVAL_PENDING)
    approved = query.filter(Expense.approval_status == states.APPROVAL_APPROVED)
    rejected = query.filter(Expense.approval_status == states.APPROVAL_REJECTED)
    paid = query.filter(Expense.payment_status == states.PAYMENT_PAID)
    overdue = query.filter(*overdue_filter())
    by_category = (
        query.with_entities(Expense.category, func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0))
        .group_by(Expense.category)
        .all()
    )
    by_method = (
        query.filter(Expense.payment_method.isnot(None))
        .with_entities(Expense.payment_method, func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0))
        .group_by(Expense.payment_method)
        .all()
    )
    return {
        "total_expenses": query.count(),
        "pending_expenses": pending.count(),
        "approved_expenses": approved.count(),
        "rejected_expenses": rejected.count(),
        "paid_expenses": paid.count(),
        "unpaid_expenses": query.filter(Expense.payment_status != states.PAYMENT_PAID).count(),
        "overdue_expenses": overdue.count(),
        "total_amount": _sum_amount(query),
        "approved_amount": _sum_amount(approved),
        "paid_amount": _sum_amount(paid),
        "pending_approval_amount": _sum_amount(pending),
        "overdue_amount": _sum_amount(overdue),
        "expenses_by_category": [
            {"category": row[0], "count": int(row[1]), "total": round(float(row[2] or 0), 2)} for row in by_category
        ],
        "expenses_by_payment_method": [
            {"payment_method": row[0], "count": int(row[1]), "total": round(float(row[2] or 0), 2)} for row in by_method
        ],
    }
