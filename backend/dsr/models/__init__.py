from .tenancy import Store
from .auth import User, UserStoreAccess
from .cash import POOLS, CashPool, CashMovement, CashCount, CashDeposit, CashTransfer, CashAdjustment
from .transactions import (
    RECONCILIATION_STATUSES,
    RECONCILIATION_SOURCES,
    TENDER_TYPES,
    Sale,
    Expense,
    SaleReturn,
    HandBill,
    GiftVoucher,
    SalesOrder,
)
from .audit import AuditEvent

__all__ = [
    'Store',
    'User', 'UserStoreAccess',
    'POOLS', 'CashPool', 'CashMovement', 'CashCount', 'CashDeposit', 'CashTransfer', 'CashAdjustment',
    'RECONCILIATION_STATUSES', 'RECONCILIATION_SOURCES', 'TENDER_TYPES',
    'Sale', 'Expense', 'SaleReturn', 'HandBill', 'GiftVoucher', 'SalesOrder',
    'AuditEvent',
]
