from __future__ import annotations

from functools import wraps
from typing import Any, Dict, Optional

from flask import current_app, g, request

from marketplace.database import get_db
from marketplace.errors import Forbidden, Unauthenticated, ValidationError
from marketplace.models import Account, AccountRole
from marketplace.services.auth_service import AuthService


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _authenticate() -> None:
    token = bearer_token()
    if token is None:
        raise Unauthenticated("A bearer token is required.")
    account, claims = AuthService(get_db(), mailer=current_app.extensions.get("mailer")).authenticate(token)
    g.current_account = account
    g.token_claims = claims


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        _authenticate()
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    """Requires both the ``admin`` claim in the token and the admin role on the account."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        _authenticate()
        if g.token_claims.get("role") != AccountRole.ADMIN.value or not g.current_account.is_admin:
            raise Forbidden("Admin access required.")
        return view(*args, **kwargs)

    return wrapper


def current_account() -> Account:
    return g.current_account


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def int_arg(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer.") from exc
