"""
Authorization gate tests.

Pure checks over the role matrix; no database.
"""

import pytest

from dsr.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    EXPENSE_AMOUNT_CEILING_PAISE,
    ROLES,
    can_access_store,
    can_edit_transaction,
    can_manage_role,
    can_perform,
    get_all_permission_codes,
    has_grant,
    validate_permission_code,
)


def _ctx(**overrides):
    context = {"status": "pending", "is_own": True, "days_since": 0}
    context.update(overrides)
    return context


class TestRoleMatrix:

    def test_every_granted_code_is_defined(self):
        codes = set(get_all_permission_codes())
        for role in ROLES:
            for code in DEFAULT_ROLE_PERMISSIONS[role]:
                assert validate_permission_code(code), f"{role} grants unknown {code}"
            assert set(DEFAULT_ROLE_PERMISSIONS[role]) <= codes

    def test_super_user_can_do_everything(self):
        for code in get_all_permission_codes():
            assert can_perform("super_user", code)

    @pytest.mark.parametrize("role", [None, "", "auditor"])
    def test_unknown_role_is_denied(self, role):
        assert can_perform(role, "VIEW_CASH") is False
        assert has_grant(role, "VIEW_CASH") is False

    def test_unknown_action_is_denied(self):
        assert can_perform("super_user", "LAUNCH_ROCKETS") is False


class TestReconcileRules:

    @pytest.mark.parametrize("role", ["store_manager", "cashier"])
    def test_store_roles_reconcile_own_same_day_pending(self, role):
        assert can_perform(role, "RECONCILE_TRANSACTIONS", _ctx())

    @pytest.mark.parametrize(
        "context",
        [
            _ctx(status="reconciled"),
            _ctx(is_own=False),
            _ctx(days_since=1),
            None,
            {},
        ],
    )
    def test_store_roles_denied_outside_own_same_day_pending(self, context):
        assert can_perform("store_manager", "RECONCILE_TRANSACTIONS", context) is False
        assert can_perform("cashier", "RECONCILE_TRANSACTIONS", context) is False

    def test_accounts_reconcile_pending_and_reconciled(self):
        assert can_perform("accounts_incharge", "RECONCILE_TRANSACTIONS", _ctx(is_own=False, days_since=30))
        assert can_perform("accounts_incharge", "FINALIZE_RECONCILIATION", _ctx(status="reconciled"))
        assert not can_perform("accounts_incharge", "FINALIZE_RECONCILIATION", _ctx(status="completed"))

    def test_store_roles_cannot_finalize(self):
        assert not has_grant("store_manager", "FINALIZE_RECONCILIATION")
        assert not has_grant("cashier", "FINALIZE_RECONCILIATION")


class TestEditRules:

    def test_pending_is_editable(self):
        for role in ROLES:
            assert can_edit_transaction("pending", role)

    def test_reconciled_editable_by_all_store_roles_only(self):
        assert can_edit_transaction("reconciled", "super_user")
        assert can_edit_transaction("reconciled", "accounts_incharge")
        assert not can_edit_transaction("reconciled", "store_manager")
        assert not can_edit_transaction("reconciled", "cashier")

    def test_completed_is_never_editable(self):
        for role in ROLES:
            assert not can_edit_transaction("completed", role)


class TestExpenseCeiling:

    def test_manager_within_ceiling(self):
        assert can_perform("store_manager", "RECORD_EXPENSE", {"amount_paise": EXPENSE_AMOUNT_CEILING_PAISE})
        assert not can_perform("store_manager", "RECORD_EXPENSE", {"amount_paise": EXPENSE_AMOUNT_CEILING_PAISE + 1})
        assert not can_perform("store_manager", "RECORD_EXPENSE", {})

    def test_cashier_cannot_record_expenses(self):
        assert not can_perform("cashier", "RECORD_EXPENSE", {"amount_paise": 100})


class TestApprovals:

    @pytest.mark.parametrize("role", ["store_manager", "cashier"])
    def test_store_roles_cannot_approve(self, role):
        assert not can_perform(role, "APPROVE_TRANSFER")
        assert not can_perform(role, "APPROVE_ADJUSTMENT")

    def test_accounts_can_approve_but_not_count(self):
        assert can_perform("accounts_incharge", "APPROVE_TRANSFER")
        assert can_perform("accounts_incharge", "APPROVE_ADJUSTMENT")
        assert not can_perform("accounts_incharge", "COUNT_CASH")


class TestStoreScope:

    def test_all_store_roles(self):
        assert can_access_store("super_user", [], 42)
        assert can_access_store("accounts_incharge", None, 42)

    def test_store_roles_need_a_grant(self):
        assert can_access_store("cashier", {1, 2}, 2)
        assert not can_access_store("cashier", {1, 2}, 3)
        assert not can_access_store("store_manager", {1}, None)

    def test_role_hierarchy(self):
        assert can_manage_role("super_user", "accounts_incharge")
        assert can_manage_role("store_manager", "cashier")
        assert not can_manage_role("cashier", "cashier")
        assert not can_manage_role("cashier", "store_manager")
