# crm/utils/guards.py

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Callable, Any

from flask_login import login_required, current_user

from crm.constants.roles import ELEVATED_ROLES, normalize_role
from crm.errors import ForbiddenError


@dataclass(frozen=True)
class Actor:
    """
    The authenticated party performing an operation.
    Built once per request and passed explicitly into service calls.
    """
    id: int
    role: str

    @property
    def is_elevated(self) -> bool:
        return normalize_role(self.role) in ELEVATED_ROLES

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=int(user.id), role=normalize_role(getattr(user, "role", None)))


def current_actor() -> Actor:
    return Actor.from_user(current_user)


def can_access(actor: Actor, client) -> bool:
    if actor.is_elevated:
        return True
    return client is not None and client.assigned_to_id == actor.id


def authorize(actor: Actor, client, message: str = "Access denied. You can only access assigned clients.") -> None:
    """
    Access gate for everything scoped to a client:
    elevated roles pass, everyone else must be the client's assigned owner.
    """
    if not can_access(actor, client):
        raise ForbiddenError(message)


def role_required(*allowed_roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Generic role gate:
        @role_required("manager")
        def view(): ...
    """
    def decorator(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            role = normalize_role(getattr(current_user, "role", None))
            if role not in allowed_roles:
                raise ForbiddenError("Access denied. Insufficient permissions.")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def manager_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """
    Allow only elevated roles.
    Returns 403 for all other logged-in roles.
    """
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if not current_actor().is_elevated:
            raise ForbiddenError("Access denied. Manager role required.")
        return view(*args, **kwargs)

    return wrapped
