# Overview: Caller identity, store scope and the authorize() entry point used by every workflow.

"""
Role lookup is delegated to the users table maintained by the identity
collaborator. Every mutating workflow calls authorize() before touching any
row, so a denial never leaves partial state.

Fail closed: unknown or inactive users have no role and are denied.
"""

from __future__ import annotations

from flask import current_app

from ..errors import AuthorizationError, NotFoundError
from ..extensions import db
from ..models import Store, User, UserStoreAccess
from ..permissions import can_access_store, can_perform
from ..permissions.gate import ALL_STORE_ROLES


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_caller_role(user_id: int) -> str:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise AuthorizationError("Unknown or inactive user")
    return user.role


def get_user_store_ids(user: User) -> set[int]:
    """Explicit grants plus the user's default store. Ignored for all-store roles."""
    rows = (
        db.session.query(UserStoreAccess.store_id)
        .filter_by(user_id=user.id, can_view=True)
        .all()
    )
    store_ids = {row[0] for row in rows}
    if user.default_store_id is not None:
        store_ids.add(user.default_store_id)
    return store_ids


def get_accessible_stores(user_id: int) -> list[Store]:
    user = get_user(user_id)
    q = db.session.query(Store).filter(Store.is_active.is_(True))
    if user.role not in ALL_STORE_ROLES:
        q = q.filter(Store.id.in_(get_user_store_ids(user)))
    return q.order_by(Store.code.asc()).all()


def get_accessible_store_ids(user_id: int) -> list[int] | None:
    """None means unrestricted."""
    user = get_user(user_id)
    if user.role in ALL_STORE_ROLES:
        return None
    return sorted(get_user_store_ids(user))


def get_default_store(user_id: int | None = None) -> Store | None:
    """
    The caller's default store when it is set and accessible, else the first
    accessible active store by code.
    """
    if user_id is not None:
        user = get_user(user_id)
        if user.default_store_id is not None:
            store = db.session.get(Store, user.default_store_id)
            if store is not None and store.is_active:
                return store
        stores = get_accessible_stores(user_id)
        return stores[0] if stores else None

    return (
        db.session.query(Store)
        .filter(Store.is_active.is_(True))
        .order_by(Store.code.asc())
        .first()
    )


def user_can_access_store(user_id: int, store_id: int | None) -> bool:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        return False
    return can_access_store(user.role, get_user_store_ids(user), store_id)


def authorize(user_id: int, action: str, *, store_id: int | None = None, **context) -> User:
    """
    Resolve the caller's role and check `action` (plus store scope when
    store_id is given). Raises AuthorizationError; returns the User.
    """
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise AuthorizationError("Unknown or inactive user", action=action)

    if not can_perform(user.role, action, context or None):
        current_app.logger.warning(
            "Permission denied: user=%s role=%s action=%s context=%s",
            user.id, user.role, action, context,
        )
        raise AuthorizationError(
            f"Role {user.role} may not perform {action}",
            action=action,
            role=user.role,
        )

    if store_id is not None and not can_access_store(user.role, get_user_store_ids(user), store_id):
        current_app.logger.warning(
            "Store access denied: user=%s role=%s store=%s", user.id, user.role, store_id,
        )
        raise AuthorizationError(
            f"No access to store {store_id}",
            action=action,
            role=user.role,
        )

    return user


def resolve_store_scope(user_id: int, requested: list[int] | None = None) -> list[int] | None:
    """
    Store filter for list endpoints. All-store roles get what they asked for
    (None = every store); store-level roles are clamped to their own stores,
    so an empty list means "nothing visible".
    """
    allowed = get_accessible_store_ids(user_id)
    if allowed is None:
        return requested
    if requested is None:
        return allowed
    allowed_set = set(allowed)
    return [sid for sid in requested if sid in allowed_set]
