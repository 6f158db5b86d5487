from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.fsm import states
from app.models.expense import EXPENSE_PAYMENT_METHODS, Expense
from app.services import expenses as expense_service
from app.services.listing import ListParams, apply_date_range, apply_filters, list_params, paginate
from app.services.records import changes_from
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/expenses", tags=["expenses"])

PAYMENT_METHOD_PATTERN = "^(" + "|".join(EXPENSE_PAYMENT_METHODS) + ")$"
SORTABLE = ("expense_number", "expense_date", "due_date", "amount", "category")


class ExpenseCreate(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = Field(None, max_length=100)
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    vendor_name: Optional[str] = Field(None, max_length=150)
    expense_date: date
    due_date: Optional[date] = None
    payment_method: Optional[str] = Field(None, pattern=PAYMENT_METHOD_PATTERN)
    receipt_url: Optional[str] = Field(None, max_length=500)
    shop_id: Optional[int] = None
    warehouse_id: Optional[int] = None

    @field_validator("due_date")
    @classmethod
    def _after_expense_date(cls, value: Optional[date], info: ValidationInfo) -> Optional[date]:
        expense_date = info.data.get("expense_date")
        if value is not None and expense_date is not None and value < expense_date:
            raise ValueError("The due date must be on or after the expense date")
        return value


class ExpenseUpdate(BaseModel):
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    subcategory: Optional[str] = Field(None, max_length=100)
    amount: Optional[float] = Field(None, gt=0)
    description: Optional[str] = Field(None, min_length=1)
    vendor_name: Optional[str] = Field(None, max_length=150)
    expense_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_method: Optional[str] = Field(None, pattern=PAYMENT_METHOD_PATTERN)
    receipt_url: Optional[str] = Field(None, max_length=500)
    shop_id: Optional[int] = None
    warehouse_id: Optional[int] = None


class DecisionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PayRequest(BaseModel):
    payment_method: str = Field(..., pattern=PAYMENT_METHOD_PATTERN)


class BulkApproveRequest(BaseModel):
    expense_ids: List[int] = Field(..., min_length=1)


@router.get("")
def list_expenses(
    params: ListParams = Depends(list_params),
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    shop_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    approval_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_VIEW)),
):
    query = scoped_query(ctx, Expense)
    for column, value in (
        (Expense.category, category),
        (Expense.subcategory, subcategory),
        (Expense.shop_id, shop_id),
        (Expense.warehouse_id, warehouse_id),
        (Expense.payment_status, payment_status),
        (Expense.approval_status, approval_status),
        (Expense.payment_method, payment_method),
    ):
        if value is not None:
            query = query.filter(column == value)
    if min_amount is not None:
        query = query.filter(Expense.amount >= min_amount)
    if max_amount is not None:
        query = query.filter(Expense.amount <= max_amount)
    query = apply_filters(
        query,
        Expense,
        params,
        search_fields=("expense_number", "description", "vendor_name", "category"),
        sortable=SORTABLE,
        date_field="expense_date",
        status_field="approval_status",
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Expenses retrieved successfully", tenant=ctx.tenant)


@router.get("/categories")
def expense_categories(ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_VIEW))):
    used = [
        row[0]
        for row in scoped_query(ctx, Expense).with_entities(Expense.category).distinct().order_by(Expense.category)
    ]
    data = {"common": list(expense_service.COMMON_CATEGORIES), "used": used}
    return envelope(data, "Expense categories retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def get_expense_stats(
    params: ListParams = Depends(list_params),
    shop_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_VIEW)),
):
    query = scoped_query(ctx, Expense)
    if shop_id is not None:
        query = query.filter(Expense.shop_id == shop_id)
    if warehouse_id is not None:
        query = query.filter(Expense.warehouse_id == warehouse_id)
    if params.date_from or params.date_to:
        query = apply_date_range(query, Expense, "expense_date", params.date_from, params.date_to)
    return envelope(
        expense_service.expense_stats(query),
        "Expense statistics retrieved successfully",
        tenant=ctx.tenant,
    )


@router.get("/pending-approvals")
def pending_approvals(
    params: ListParams = Depends(list_params),
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_APPROVE)),
):
    query = (
        scoped_query(ctx, Expense)
        .filter(Expense.approval_status == states.APPROVAL_PENDING)
        .order_by(Expense.expense_date.asc(), Expense.id.asc())
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Pending approvals retrieved successfully", tenant=ctx.tenant)


@router.get("/overdue")
def overdue_expenses(
    params: ListParams = Depends(list_params),
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_VIEW)),
):
    query = (
        scoped_query(ctx, Expense)
        .filter(*expense_service.overdue_filter())
        .order_by(Expense.due_date.asc(), Expense.id.asc())
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Overdue expenses retrieved successfully", tenant=ctx.tenant)


@router.post("/bulk-approve")
def bulk_approve(
    payload: BulkApproveRequest,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_APPROVE)),
):
    with atomic(ctx.db, "Failed to approve expenses"):
        results = expense_service.bulk_approve(ctx, payload.expense_ids)
    return envelope(results, f"{len(results)} expenses approved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_expense(
    payload: ExpenseCreate,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_CREATE)),
):
    with atomic(ctx.db, "Failed to create expense"):
        expense = expense_service.create_expense(ctx, payload.model_dump())
    return envelope(to_dict(expense), "Expense created successfully", tenant=ctx.tenant)


@router.get("/{expense_id}")
def show_expense(expense_id: int, ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_VIEW))):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    return envelope(to_dict(expense), "Expense retrieved successfully", tenant=ctx.tenant)


@router.put("/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_EDIT)),
):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    with atomic(ctx.db, "Failed to update expense"):
        expense_service.update_expense(ctx, expense, changes_from(payload, Expense))
    return envelope(to_dict(expense), "Expense updated successfully", tenant=ctx.tenant)


@router.delete("/{expense_id}")
def delete_expense(expense_id: int, ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_DELETE))):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    with atomic(ctx.db, "Failed to delete expense"):
        expense_service.delete_expense(ctx, expense)
    return envelope(None, "Expense deleted successfully", tenant=ctx.tenant)


@router.post("/{expense_id}/approve")
def approve_expense(
    expense_id: int,
    payload: Optional[DecisionRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_APPROVE)),
):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    reason = payload.reason if payload is not None else None
    with atomic(ctx.db, "Failed to approve expense"):
        expense_service.decide_expense(ctx, expense, "approve", reason=reason)
    return envelope(to_dict(expense), "Expense approved successfully", tenant=ctx.tenant)


@router.post("/{expense_id}/reject")
def reject_expense(
    expense_id: int,
    payload: Optional[DecisionRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_APPROVE)),
):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    reason = payload.reason if payload is not None else None
    with atomic(ctx.db, "Failed to reject expense"):
        expense_service.decide_expense(ctx, expense, "reject", reason=reason)
    return envelope(to_dict(expense), "Expense rejected successfully", tenant=ctx.tenant)


@router.post("/{expense_id}/pay")
def pay_expense(
    expense_id: int,
    payload: PayRequest,
    ctx: RequestContext = Depends(require_permission(Permission.EXPENSES_MANAGE_PAYMENT)),
):
    expense = get_scoped_or_404(ctx, Expense, expense_id, "Expense")
    with atomic(ctx.db, "Failed to mark expense as paid"):
        expense_service.pay_expense(ctx, expense, payload.payment_method)
    return envelope(to_dict(expense), "Expense marked as paid successfully", tenant=ctx.tenant)
