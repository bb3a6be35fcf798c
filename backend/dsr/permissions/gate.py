# Overview: Pure authorization predicates; no database access, no hidden state.

from .roles import (
    ACCOUNTS_INCHARGE,
    CONTEXT_PREDICATES,
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_LEVELS,
    SUPER_USER,
)


# Roles that see every store regardless of access grants
ALL_STORE_ROLES = frozenset({SUPER_USER, ACCOUNTS_INCHARGE})


def can_perform(role, action, context=None):
    """
    True when `role` may perform `action` given `context`.

    Unknown roles and unknown actions are denied. Never raises.
    """
    grants = DEFAULT_ROLE_PERMISSIONS.get(role)
    if not grants:
        return False
    rule = grants.get(action)
    if rule is True:
        return True
    if isinstance(rule, str):
        predicate = CONTEXT_PREDICATES.get(rule)
        return bool(predicate and predicate(context))
    return False


def can_edit_transaction(status, role):
    """Pending is editable by anyone allowed to edit; reconciled only by accounts staff."""
    if status == "pending":
        return True
    if status == "reconciled" and role in ALL_STORE_ROLES:
        return True
    return False


def can_access_store(role, user_store_ids, store_id):
    if role in ALL_STORE_ROLES:
        return True
    if store_id is None:
        return False
    return store_id in set(user_store_ids or ())


def get_role_level(role):
    return ROLE_LEVELS.get(role, 0)


def can_manage_role(manager_role, target_role):
    """Strictly higher level manages lower levels; peers cannot manage each other."""
    return get_role_level(manager_role) > get_role_level(target_role)


def has_grant(role, action):
    """
    True when the role holds `action` at all, conditionally or not.

    Route decorators use this; the workflow re-checks with full context.
    """
    grants = DEFAULT_ROLE_PERMISSIONS.get(role) or {}
    return bool(grants.get(action))
