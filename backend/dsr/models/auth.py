from __future__ import annotations

from ..extensions import db
from dsr.time_utils import to_utc_z


class User(db.Model):
    """
    Staff account as seen by the cash workflows.

    Authentication lives with the identity provider; this row only carries
    what authorization needs: role, default store and active flag.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(255), nullable=True)

    # super_user | accounts_incharge | store_manager | cashier
    role = db.Column(db.String(32), nullable=False, index=True)

    default_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    default_store = db.relationship("Store", backref=db.backref("default_users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "default_store_id": self.default_store_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class UserStoreAccess(db.Model):
    """
    Per-store access grant for store-level roles.

    super_user and accounts_incharge see every store and need no rows here.
    """
    __tablename__ = "user_store_access"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_user_store_access_user_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    can_view = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("store_access", lazy=True))
    store = db.relationship("Store")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "can_view": self.can_view,
            "created_at": to_utc_z(self.created_at),
        }
