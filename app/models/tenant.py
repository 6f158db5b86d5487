from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.core.database import Base, utcnow

TENANT_STATUSES = ("active", "suspended", "cancelled")
SUBSCRIPTION_PLANS = ("trial", "basic", "premium", "enterprise")


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True)
    tenant_code = Column(String(20), unique=True, index=True, nullable=False)
    company_name = Column(String(200), nullable=False)
    business_type = Column(String(100), nullable=True)
    contact_person = Column(String(150), nullable=True)
    email = Column(String(150), unique=True, nullable=True)
    phone_number = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    currency = Column(String(10), nullable=False, default="USD")
    timezone = Column(String(50), nullable=False, default="UTC")
    subscription_plan = Column(String(20), nullable=False, default="trial")
    status = Column(String(20), nullable=False, default="active", index=True)
    is_trial = Column(Boolean, nullable=False, default=False)
    trial_ends_at = Column(DateTime, nullable=True)
    # 0 or NULL means unlimited
    max_users = Column(Integer, nullable=True)
    max_products = Column(Integer, nullable=True)
    max_warehouses = Column(Integer, nullable=True)
    max_shops = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
