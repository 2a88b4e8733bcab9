from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.portal.audit import record_event
from app.portal.constants import ROLE_ADMIN
from app.portal.db import db_session
from app.portal.models import User
from app.portal.rbac import Caller
from app.portal.security import ensure_csrf_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def start_session(user: User) -> None:
    session["user_id"] = user.id
    session["session_version"] = user.session_version


def end_session() -> None:
    session.pop("user_id", None)
    session.pop("session_version", None)
    g.current_user = None
    g.current_caller = None


def load_current_user() -> None:
    """
    Loads g.current_user / g.current_caller from the signed session cookie.

    Roles are read from the database on every request. A session whose stored
    version no longer matches the user's (roles changed, password reset) is
    dropped, so the caller has to sign in again.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.current_caller = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            end_session()
            return
        if session.get("session_version") != user.session_version:
            current_app.logger.info("Stale session for user=%s (version changed); signing out", user.id)
            end_session()
            return
        g.current_user = user
        g.current_caller = Caller.from_user(user)
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        end_session()


def _credentials() -> tuple[str, str]:
    body = request.get_json(silent=True) or {}
    email = str(body.get("email") or request.form.get("email") or "").strip().lower()
    password = str(body.get("password") or request.form.get("password") or "")
    return email, password


@bp.get("/csrf")
def csrf_token():
    return jsonify({"ok": True, "csrf_token": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    email, password = _credentials()
    ip = request.remote_addr or "unknown"

    if not email or not password:
        return jsonify({"ok": False, "error": "Email and password are required."}), 400

    if _check_rate_limit(ip):
        return jsonify({"ok": False, "error": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return jsonify({"ok": False, "error": "Invalid email or password."}), 401

        session.clear()
        start_session(user)
        _login_attempts[ip].clear()
        caller = Caller.from_user(user)
        record_event(s, actor=caller, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify(
            {
                "ok": True,
                "user_id": user.id,
                "role_keys": sorted(caller.role_keys),
                "csrf_token": ensure_csrf_token(),
            }
        )
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/admin-check")
def admin_check():
    """Credential probe used by the sign-in form: never says which part was wrong."""
    email, password = _credentials()
    if not email or not password:
        return jsonify({"ok": False, "isAdmin": False, "error": "Email and password are required"}), 400
    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({"ok": False, "isAdmin": False})
    return jsonify({"ok": True, "isAdmin": ROLE_ADMIN in user.role_keys})


@bp.get("/logout")
def logout():
    s = db_session()
    caller = getattr(g, "current_caller", None)
    if caller:
        record_event(s, actor=caller, action="auth.logout", entity_type="User", entity_id=str(caller.user_id))
        s.commit()
    end_session()
    return jsonify({"ok": True})
