# Overview: Default role -> permission matrix and the context predicates it uses.

"""
Each role maps a permission code to either True or a named context predicate.
A code missing from a role's table is denied.

Context keys read by the predicates (all optional, missing means deny):
- status: current reconciliation status of the record being acted on
- is_own: caller created the record
- days_since: whole business days between the record's date and today
- amount_paise: amount involved in the action
"""

from .definitions import PERMISSION_DEFINITIONS


SUPER_USER = "super_user"
ACCOUNTS_INCHARGE = "accounts_incharge"
STORE_MANAGER = "store_manager"
CASHIER = "cashier"

ROLES = (SUPER_USER, ACCOUNTS_INCHARGE, STORE_MANAGER, CASHIER)

# Higher number = more authority
ROLE_LEVELS = {
    SUPER_USER: 4,
    ACCOUNTS_INCHARGE: 3,
    STORE_MANAGER: 2,
    CASHIER: 1,
}

ROLE_DISPLAY_NAMES = {
    SUPER_USER: "Super User",
    ACCOUNTS_INCHARGE: "Accounts Incharge",
    STORE_MANAGER: "Store Manager",
    CASHIER: "Cashier",
}

# Store-level expense recording ceiling (₹5,000)
EXPENSE_AMOUNT_CEILING_PAISE = 5_000_00


# -- context predicates --

def same_day_own_pending(context):
    if not context:
        return False
    return (
        context.get("status") == "pending"
        and bool(context.get("is_own"))
        and context.get("days_since") is not None
        and context["days_since"] <= 0
    )


def pending_or_reconciled(context):
    if not context:
        return False
    return context.get("status") in ("pending", "reconciled")


def pending_only(context):
    if not context:
        return False
    return context.get("status") == "pending"


def within_amount_ceiling(context):
    if not context or context.get("amount_paise") is None:
        return False
    return context["amount_paise"] <= EXPENSE_AMOUNT_CEILING_PAISE


CONTEXT_PREDICATES = {
    "same_day_own_pending": same_day_own_pending,
    "pending_or_reconciled": pending_or_reconciled,
    "pending_only": pending_only,
    "within_amount_ceiling": within_amount_ceiling,
}


# WHY these mappings:
# - super_user: everything
# - accounts_incharge: approvals, reconciliation (including reconciled -> completed), full read
# - store_manager / cashier: store-floor work; reconcile only their own same-day pending items

_STORE_FLOOR = {
    "VIEW_CASH": True,
    "COUNT_CASH": True,
    "RECORD_DEPOSIT": True,
    "REQUEST_TRANSFER": True,
    "REQUEST_ADJUSTMENT": True,
    "RECORD_TRANSACTION": True,
    "REDEEM_VOUCHER": True,
    "VIEW_RECONCILIATION": True,
    "RECONCILE_TRANSACTIONS": "same_day_own_pending",
    "EDIT_TRANSACTION": "pending_only",
}

DEFAULT_ROLE_PERMISSIONS = {
    SUPER_USER: {perm[0]: True for perm in PERMISSION_DEFINITIONS},

    ACCOUNTS_INCHARGE: {
        "VIEW_CASH": True,
        "APPROVE_TRANSFER": True,
        "APPROVE_ADJUSTMENT": True,
        "VIEW_RECONCILIATION": True,
        "RECONCILE_TRANSACTIONS": "pending_or_reconciled",
        "FINALIZE_RECONCILIATION": "pending_or_reconciled",
        "EDIT_TRANSACTION": "pending_or_reconciled",
        "CANCEL_VOUCHER": True,
    },

    STORE_MANAGER: {
        **_STORE_FLOOR,
        "RECORD_EXPENSE": "within_amount_ceiling",
    },

    CASHIER: dict(_STORE_FLOOR),
}
