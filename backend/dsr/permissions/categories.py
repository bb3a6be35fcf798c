# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CASH = "CASH"
    APPROVALS = "APPROVALS"
    RECONCILIATION = "RECONCILIATION"
    TRANSACTIONS = "TRANSACTIONS"
