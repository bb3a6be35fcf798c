# Overview: Permission system package.
# Re-exports all public APIs so callers can import from dsr.permissions.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    CASH_PERMISSIONS,
    APPROVAL_PERMISSIONS,
    RECONCILIATION_PERMISSIONS,
    TRANSACTION_PERMISSIONS,
)
from .roles import (
    SUPER_USER,
    ACCOUNTS_INCHARGE,
    STORE_MANAGER,
    CASHIER,
    ROLES,
    ROLE_LEVELS,
    ROLE_DISPLAY_NAMES,
    DEFAULT_ROLE_PERMISSIONS,
    CONTEXT_PREDICATES,
    EXPENSE_AMOUNT_CEILING_PAISE,
)
from .gate import (
    can_perform,
    can_edit_transaction,
    can_access_store,
    can_manage_role,
    get_role_level,
    has_grant,
)
from .helpers import (
    get_all_permission_codes,
    get_permission_definition,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "CASH_PERMISSIONS",
    "APPROVAL_PERMISSIONS",
    "RECONCILIATION_PERMISSIONS",
    "TRANSACTION_PERMISSIONS",
    "SUPER_USER",
    "ACCOUNTS_INCHARGE",
    "STORE_MANAGER",
    "CASHIER",
    "ROLES",
    "ROLE_LEVELS",
    "ROLE_DISPLAY_NAMES",
    "DEFAULT_ROLE_PERMISSIONS",
    "CONTEXT_PREDICATES",
    "EXPENSE_AMOUNT_CEILING_PAISE",
    "can_perform",
    "can_edit_transaction",
    "can_access_store",
    "can_manage_role",
    "get_role_level",
    "has_grant",
    "get_all_permission_codes",
    "get_permission_definition",
    "validate_permission_code",
]
