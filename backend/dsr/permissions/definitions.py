# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- CASH --

CASH_PERMISSIONS = [
    (
        "VIEW_CASH",
        "View Cash",
        "View pool balances, expected amounts, counts and cash activity",
        PermissionCategory.CASH,
    ),
    (
        "COUNT_CASH",
        "Count Cash",
        "Submit denomination counts for sales-cash and petty-cash",
        PermissionCategory.CASH,
    ),
    (
        "RECORD_DEPOSIT",
        "Record Deposit",
        "Record a bank deposit taken out of sales-cash",
        PermissionCategory.CASH,
    ),
    (
        "REQUEST_TRANSFER",
        "Request Transfer",
        "Request a sales-cash to petty-cash transfer",
        PermissionCategory.CASH,
    ),
    (
        "REQUEST_ADJUSTMENT",
        "Request Adjustment",
        "Request an initial setup, correction, injection or loss adjustment",
        PermissionCategory.CASH,
    ),
]


# -- APPROVALS --

APPROVAL_PERMISSIONS = [
    (
        "APPROVE_TRANSFER",
        "Approve Transfer",
        "Approve, modify or reject pending cash transfers",
        PermissionCategory.APPROVALS,
    ),
    (
        "APPROVE_ADJUSTMENT",
        "Approve Adjustment",
        "Approve, reject and apply pending cash adjustments",
        PermissionCategory.APPROVALS,
    ),
]


# -- RECONCILIATION --

RECONCILIATION_PERMISSIONS = [
    (
        "VIEW_RECONCILIATION",
        "View Reconciliation",
        "List pending transactions and reconciliation summaries",
        PermissionCategory.RECONCILIATION,
    ),
    (
        "RECONCILE_TRANSACTIONS",
        "Reconcile Transactions",
        "Match transactions against bank, ERP, cash or voucher records",
        PermissionCategory.RECONCILIATION,
    ),
    (
        "FINALIZE_RECONCILIATION",
        "Finalize Reconciliation",
        "Move reconciled transactions to completed",
        PermissionCategory.RECONCILIATION,
    ),
]


# -- TRANSACTIONS --

TRANSACTION_PERMISSIONS = [
    (
        "RECORD_TRANSACTION",
        "Record Transaction",
        "Record sales, expenses, returns, hand bills, vouchers and orders",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "RECORD_EXPENSE",
        "Record Expense",
        "Record a petty-cash expense",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "EDIT_TRANSACTION",
        "Edit Transaction",
        "Edit transactional fields of a recorded transaction",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "REDEEM_VOUCHER",
        "Redeem Voucher",
        "Redeem an active gift voucher",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "CANCEL_VOUCHER",
        "Cancel Voucher",
        "Cancel an active gift voucher issued in error",
        PermissionCategory.TRANSACTIONS,
    ),
]


PERMISSION_DEFINITIONS = (
    CASH_PERMISSIONS
    + APPROVAL_PERMISSIONS
    + RECONCILIATION_PERMISSIONS
    + TRANSACTION_PERMISSIONS
)
