"""
Role/admin authorization gate.

Every check takes the caller explicitly. `Caller` is built from the database at
the start of each request (see app.portal.auth.load_current_user), never from a
role list cached in the session cookie.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import g, jsonify

from app.portal.constants import ROLE_ADMIN, ROLE_MEMBER, ROLE_MODULE_LEADER, ROLE_STUDENT
from app.portal.errors import ForbiddenError

if TYPE_CHECKING:
    from app.portal.models import User

logger = logging.getLogger(__name__)


class RoleKey(str, enum.Enum):
    ADMIN = ROLE_ADMIN
    MEMBER = ROLE_MEMBER
    STUDENT = ROLE_STUDENT
    MODULE_LEADER = ROLE_MODULE_LEADER


@dataclass(frozen=True)
class Caller:
    user_id: int
    email: str | None = None
    role_keys: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user: "User") -> "Caller":
        return cls(user_id=user.id, email=user.email, role_keys=user.role_keys)

    @property
    def is_admin(self) -> bool:
        return RoleKey.ADMIN.value in self.role_keys

    def is_self(self, user_id: int) -> bool:
        return self.user_id == user_id


def require_admin(caller: Caller | None, action: str = "this operation") -> Caller:
    if caller is None or not caller.is_admin:
        logger.warning("Forbidden: admin required for %s (caller=%s)", action, caller.user_id if caller else None)
        raise ForbiddenError("Admin access required.")
    return caller


def require_self_or_admin(caller: Caller | None, target_user_id: int) -> Caller:
    if caller is None:
        raise ForbiddenError("Forbidden.")
    if caller.is_self(target_user_id) or caller.is_admin:
        return caller
    logger.warning("Forbidden: user %s acting on user %s", caller.user_id, target_user_id)
    raise ForbiddenError("Forbidden.")


def require_can_delete(caller: Caller | None, target_user_id: int) -> Caller:
    """
    Admins may delete anyone but themselves; everyone else may delete only themselves.
    """
    if caller is None:
        raise ForbiddenError("Forbidden.")
    if caller.is_self(target_user_id):
        if caller.is_admin:
            raise ForbiddenError("Admins cannot delete their own account.")
        return caller
    if not caller.is_admin:
        logger.warning("Forbidden: user %s tried to delete user %s", caller.user_id, target_user_id)
        raise ForbiddenError("Forbidden.")
    return caller


def current_caller() -> Caller | None:
    return getattr(g, "current_caller", None)


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_caller() is None:
            return jsonify({"ok": False, "error": "Not signed in."}), 401
        return fn(*args, **kwargs)

    return wrapped


def admin_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        caller = current_caller()
        # Unauthenticated -> 401, authenticated but not admin -> 403
        if caller is None:
            return jsonify({"ok": False, "error": "Not signed in."}), 401
        require_admin(caller, action=fn.__name__)
        return fn(*args, **kwargs)

    return wrapped
