# Overview: Small request-parsing helpers shared by the API blueprints.

from __future__ import annotations

from flask import g, request

from ..errors import AuthorizationError, ValidationError
from ..services.identity_service import user_can_access_store
from ..validation import coerce_date, coerce_int


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def query_date(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return default
    return coerce_date(raw, name)


def query_int(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return default
    return coerce_int(raw, name)


def query_store_ids() -> list[int] | None:
    """?store_id=1&store_id=2 or ?store_id=1,2"""
    raw = request.args.getlist("store_id")
    if not raw:
        return None
    ids = []
    for chunk in raw:
        for part in chunk.split(","):
            if part.strip():
                ids.append(coerce_int(part, "store_id"))
    return ids


def require_store_access(store_id: int) -> None:
    if not user_can_access_store(g.current_user.id, store_id):
        raise AuthorizationError(f"No access to store {store_id}")


def query_flag(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
