from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, cast

from flask import current_app, g, request

from utils.db import EXTENSION_KEY
from utils.principal import (
    AdminPrincipal,
    InvalidClaims,
    Principal,
    StudentPrincipal,
    TeacherPrincipal,
    principal_from_claims,
)
from utils.responses import forbidden, unauthorized
from utils.tokens import TokenError, TokenService

F = TypeVar("F", bound=Callable[..., Any])

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class GateResult:
    ok: bool
    principal: Optional[Principal] = None


DENIED = GateResult(ok=False)


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX):].strip()
    return token or None


def gate_user(req, tokens: TokenService) -> GateResult:
    """Admit any authenticated role."""
    token = extract_bearer(req.headers.get("Authorization"))
    if token is None:
        return DENIED
    try:
        claims = tokens.verify(token)
        principal = principal_from_claims(claims)
    except (TokenError, InvalidClaims):
        return DENIED
    return GateResult(ok=True, principal=principal)


def gate_admin(req, tokens: TokenService) -> GateResult:
    result = gate_user(req, tokens)
    if not result.ok or not isinstance(result.principal, AdminPrincipal):
        return DENIED
    return result


def _token_service() -> TokenService:
    return current_app.extensions[EXTENSION_KEY].tokens


def _guarded(
    gate: Callable[[Any, TokenService], GateResult],
    role_type: Optional[type] = None,
    label: str = "",
):
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            result = gate(request, _token_service())
            if not result.ok:
                raise unauthorized()
            if role_type is not None and not isinstance(result.principal, role_type):
                raise forbidden(f"Access denied. User is not a {label}.")
            g.principal = result.principal
            return func(*args, **kwargs)

        return cast(F, wrapper)

    return decorator


def user_required(func: F) -> F:
    """Require a valid bearer token of any role; the principal lands on ``g.principal``."""
    return _guarded(gate_user)(func)


def admin_required(func: F) -> F:
    """Require a valid admin bearer token. Non-admins get the same 401 as anonymous callers."""
    return _guarded(gate_admin)(func)


def student_required(func: F) -> F:
    return _guarded(gate_user, StudentPrincipal, "student")(func)


def teacher_required(func: F) -> F:
    return _guarded(gate_user, TeacherPrincipal, "teacher")(func)


def current_principal() -> Principal:
    return g.principal
