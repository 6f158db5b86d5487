from app.models.tenant import Tenant
from app.models.role import Role, RolePermission
from app.models.user import User
from app.models.user_session import UserSession
from app.models.audit_log import AuditLog
from app.models.category import Category
from app.models.brand import Brand
from app.models.supplier import Supplier
from app.models.warehouse import Warehouse
from app.models.shop import Shop
from app.models.product import Product
from app.models.customer_profile import CustomerProfile
from app.models.order import Order, OrderItem
from app.models.purchase import Purchase, PurchaseItem
from app.models.expense import Expense
from app.models.notice import NoticeEvent
from app.models.inventory import InventoryMovement

# Tenant-owned tables, in dependency order for bulk deletion
TENANT_SCOPED_MODELS = (
    InventoryMovement,
    OrderItem,
    Order,
    PurchaseItem,
    Purchase,
    Expense,
    NoticeEvent,
    Product,
    CustomerProfile,
    Shop,
    Warehouse,
    Category,
    Brand,
    Supplier,
)
