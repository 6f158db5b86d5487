from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint

from app.core.database import Base, utcnow

EXPENSE_APPROVAL_STATUSES = ("pending", "approved", "rejected")
EXPENSE_PAYMENT_STATUSES = ("pending", "paid", "overdue")
EXPENSE_PAYMENT_METHODS = ("cash", "card", "bank_transfer", "mobile_money")


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (UniqueConstraint("tenant_id", "expense_number", name="uq_expenses_tenant_number"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    expense_number = Column(String(30), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    subcategory = Column(String(100), nullable=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    description = Column(Text, nullable=False)
    vendor_name = Column(String(150), nullable=True)
    expense_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    payment_method = Column(String(20), nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    approval_status = Column(String(20), nullable=False, default="pending", index=True)
    receipt_url = Column(String(500), nullable=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="SET NULL"), nullable=True, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
