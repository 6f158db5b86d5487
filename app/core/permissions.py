"""Closed role and permission vocabulary.

Every permission string the API checks is a member of ``Permission``; role
bundles and stored grants are validated against it at startup.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import Iterable


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    ADMIN = "admin"
    WAREHOUSE_MANAGER = "warehouse_manager"
    SHOP_MANAGER = "shop_manager"
    EMPLOYEE = "employee"
    CUSTOMER = "customer"


class Permission(str, Enum):
    USERS_VIEW = "users.view"
    USERS_CREATE = "users.create"
    USERS_EDIT = "users.edit"
    USERS_DELETE = "users.delete"
    USERS_MANAGE_PERMISSIONS = "users.manage_permissions"
    USERS_BULK_ACTIONS = "users.bulk_actions"

    CUSTOMERS_VIEW = "customers.view"
    CUSTOMERS_CREATE = "customers.create"
    CUSTOMERS_EDIT = "customers.edit"
    CUSTOMERS_DELETE = "customers.delete"

    PRODUCTS_VIEW = "products.view"
    PRODUCTS_CREATE = "products.create"
    PRODUCTS_EDIT = "products.edit"
    PRODUCTS_DELETE = "products.delete"
    PRODUCTS_MANAGE_STOCK = "products.manage_stock"
    PRODUCTS_BULK_ACTIONS = "products.bulk_actions"

    ORDERS_VIEW = "orders.view"
    ORDERS_CREATE = "orders.create"
    ORDERS_EDIT = "orders.edit"
    ORDERS_DELETE = "orders.delete"
    ORDERS_MANAGE = "orders.manage"
    ORDERS_MANAGE_PAYMENT = "orders.manage_payment"

    PURCHASES_VIEW = "purchases.view"
    PURCHASES_CREATE = "purchases.create"
    PURCHASES_EDIT = "purchases.edit"
    PURCHASES_DELETE = "purchases.delete"
    PURCHASES_MANAGE = "purchases.manage"
    PURCHASES_RECEIVE = "purchases.receive"
    PURCHASES_MANAGE_PAYMENT = "purchases.manage_payment"

    WAREHOUSES_VIEW = "warehouses.view"
    WAREHOUSES_CREATE = "warehouses.create"
    WAREHOUSES_EDIT = "warehouses.edit"
    WAREHOUSES_DELETE = "warehouses.delete"
    WAREHOUSES_TRANSFER = "warehouses.transfer"

    SHOPS_VIEW = "shops.view"
    SHOPS_CREATE = "shops.create"
    SHOPS_EDIT = "shops.edit"
    SHOPS_DELETE = "shops.delete"

    CATEGORIES_VIEW = "categories.view"
    CATEGORIES_CREATE = "categories.create"
    CATEGORIES_EDIT = "categories.edit"
    CATEGORIES_DELETE = "categories.delete"
    CATEGORIES_BULK_ACTIONS = "categories.bulk_actions"

    BRANDS_VIEW = "brands.view"
    BRANDS_CREATE = "brands.create"
    BRANDS_EDIT = "brands.edit"
    BRANDS_DELETE = "brands.delete"

    SUPPLIERS_VIEW = "suppliers.view"
    SUPPLIERS_CREATE = "suppliers.create"
    SUPPLIERS_EDIT = "suppliers.edit"
    SUPPLIERS_DELETE = "suppliers.delete"

    EXPENSES_VIEW = "expenses.view"
    EXPENSES_CREATE = "expenses.create"
    EXPENSES_EDIT = "expenses.edit"
    EXPENSES_DELETE = "expenses.delete"
    EXPENSES_APPROVE = "expenses.approve"
    EXPENSES_MANAGE_PAYMENT = "expenses.manage_payment"

    INVENTORY_VIEW = "inventory.view"
    INVENTORY_ADJUST = "inventory.adjust"

    NOTICES_VIEW = "notices.view"
    NOTICES_CREATE = "notices.create"
    NOTICES_EDIT = "notices.edit"
    NOTICES_DELETE = "notices.delete"
    NOTICES_PUBLISH = "notices.publish"

    AUDIT_VIEW = "audit.view"
    AUDIT_EXPORT = "audit.export"
    AUDIT_CLEANUP = "audit.cleanup"

    DASHBOARD_VIEW = "dashboard.view"

    ROLES_VIEW = "roles.view"
    ROLES_CREATE = "roles.create"
    ROLES_EDIT = "roles.edit"
    ROLES_DELETE = "roles.delete"
    ROLES_MANAGE_PERMISSIONS = "roles.manage_permissions"


PERMISSION_CATALOG: frozenset[str] = frozenset(member.value for member in Permission)


def _group(*resources: str) -> list[Permission]:
    return [member for member in Permission if member.value.split(".", 1)[0] in resources]


def _only(*names: str) -> list[Permission]:
    return [Permission(name) for name in names]


DEFAULT_ROLE_PERMISSIONS: dict[UserRole, list[Permission]] = {
    UserRole.SUPER_ADMIN: list(Permission),
    UserRole.TENANT_ADMIN: list(Permission),
    UserRole.ADMIN: [
        member
        for member in Permission
        if member not in {Permission.AUDIT_CLEANUP, Permission.ROLES_DELETE}
    ],
    UserRole.WAREHOUSE_MANAGER: _group("products", "inventory", "warehouses", "purchases", "suppliers")
    + _only("categories.view", "brands.view", "dashboard.view", "notices.view", "orders.view"),
    UserRole.SHOP_MANAGER: _group("orders", "customers", "shops")
    + _only(
        "products.view",
        "categories.view",
        "brands.view",
        "inventory.view",
        "expenses.view",
        "expenses.create",
        "dashboard.view",
        "notices.view",
    ),
    UserRole.EMPLOYEE: _only(
        "products.view",
        "categories.view",
        "brands.view",
        "orders.view",
        "orders.create",
        "customers.view",
        "customers.create",
        "inventory.view",
        "notices.view",
        "dashboard.view",
    ),
    UserRole.CUSTOMER: _only("products.view", "categories.view", "brands.view", "notices.view"),
}

ROLE_DISPLAY_NAMES: dict[UserRole, str] = {
    UserRole.SUPER_ADMIN: "Super Admin",
    UserRole.TENANT_ADMIN: "Tenant Admin",
    UserRole.ADMIN: "Administrator",
    UserRole.WAREHOUSE_MANAGER: "Warehouse Manager",
    UserRole.SHOP_MANAGER: "Shop Manager",
    UserRole.EMPLOYEE: "Employee",
    UserRole.CUSTOMER: "Customer",
}


def is_known_permission(value: str) -> bool:
    return value in PERMISSION_CATALOG


def unknown_permissions(values: Iterable[str]) -> list[str]:
    return sorted({value for value in values if value not in PERMISSION_CATALOG})


def ensure_known_permission(value: str | Permission) -> str:
    """Return the permission string, failing fast on names outside the catalog."""
    raw = value.value if isinstance(value, Permission) else value
    if raw not in PERMISSION_CATALOG:
        raise ValueError(f"Unknown permission: {raw!r}")
    return raw


def grouped_catalog() -> dict[str, list[str]]:
    groups: dict[str, list[str]] = defaultdict(list)
    for member in Permission:
        resource = member.value.split(".", 1)[0]
        groups[resource].append(member.value)
    return dict(groups)


def validate_role_bundles() -> None:
    """Startup check: every built-in role and bundle entry is a catalog member."""
    missing_roles = [role.value for role in UserRole if role not in DEFAULT_ROLE_PERMISSIONS]
    if missing_roles:
        raise RuntimeError(f"Roles without a permission bundle: {', '.join(missing_roles)}")
    for role, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        invalid = unknown_permissions(str(getattr(perm, "value", perm)) for perm in permissions)
        if invalid:
            raise RuntimeError(f"Role {role.value} references unknown permissions: {', '.join(invalid)}")
