import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import Base, utcnow

PRODUCT_STATUSES = ("active", "inactive", "discontinued", "out_of_stock")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    sku = Column(String(100), nullable=False)
    barcode = Column(String(100), nullable=True)
    cost_price = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    selling_price = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    discount_price = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    tax_rate = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    stock_quantity = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=0)
    max_stock_level = Column(Integer, nullable=True)
    reorder_point = Column(Integer, nullable=True)
    weight = Column(Numeric(10, 3, asdecimal=False), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    tags = Column(sa.JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    primary_image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
