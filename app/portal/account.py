"""
Account endpoints: profile read/update, create/delete, password changes.

Handlers own the transaction: the service call does the work, then the handler
commits once. Errors raised by the services are rendered by the app-level
PortalError handler, which rolls the request session back.
"""
from flask import Blueprint, current_app, jsonify, request

from app.portal.accounts import (
    change_password,
    create_user,
    delete_user,
    get_user_profile,
    reset_password,
    set_default_app,
    update_user,
)
from app.portal.auth import end_session, start_session
from app.portal.db import db_session
from app.portal.errors import ValidationError
from app.portal.models import User
from app.portal.rbac import admin_required, current_caller, login_required
from app.portal.utils import parse_optional_int

bp = Blueprint("account", __name__)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _target_id(body: dict, key: str = "userId") -> int:
    user_id = parse_optional_int(body.get(key), key)
    if user_id is None:
        raise ValidationError("User id is required.", field=key)
    return user_id


@bp.get("/user")
@login_required
def user_get():
    caller = current_caller()
    user_id = parse_optional_int(request.args.get("userId"), "userId")
    return jsonify({"ok": True, **get_user_profile(db_session(), caller, user_id)})


@bp.post("/update-user")
@login_required
def user_update():
    caller = current_caller()
    body = json_body()
    s = db_session()
    target_id = parse_optional_int(body.get("userId"), "userId") or caller.user_id
    result = update_user(
        s,
        caller,
        target_id,
        body.get("fields") or {},
        body.get("admin"),
        confirm_demotion=bool(body.get("confirmDemotion")),
    )
    s.commit()

    if result.admin_demoted:
        end_session()
    elif result.roles_changed and caller.is_self(target_id):
        # Own roles changed without losing ADMIN: carry the new version forward.
        start_session(s.get(User, target_id))
    return jsonify(
        {
            "ok": True,
            "userId": result.user_id,
            "adminDemoted": result.admin_demoted,
            "reauthenticate": result.admin_demoted,
        }
    )


@bp.post("/delete-user")
@login_required
def user_delete():
    caller = current_caller()
    body = json_body()
    target_id = parse_optional_int(body.get("userId"), "userId") or caller.user_id
    s = db_session()
    delete_user(s, caller, target_id)
    s.commit()
    if caller.is_self(target_id):
        end_session()
    return jsonify({"ok": True, "deletedUserId": target_id})


@bp.post("/create-user")
@admin_required
def user_create():
    caller = current_caller()
    body = json_body()
    s = db_session()
    user = create_user(
        s,
        caller,
        email=body.get("email") or "",
        first_name=body.get("firstName") or "",
        last_name=body.get("lastName") or "",
        password=body.get("password") or "",
        role_keys=body.get("roleKeys") or [],
        organisation_id=parse_optional_int(body.get("organisationId"), "organisationId"),
        min_password_length=current_app.config.get("PASSWORD_MIN_LENGTH", 8),
    )
    s.commit()
    return jsonify({"ok": True, "userId": user.id}), 201


@bp.post("/change-password")
@login_required
def password_change():
    caller = current_caller()
    body = json_body()
    s = db_session()
    user = change_password(
        s,
        caller,
        body.get("currentPassword") or "",
        body.get("newPassword") or "",
        min_length=current_app.config.get("PASSWORD_MIN_LENGTH", 8),
    )
    s.commit()
    # Other sessions are invalidated; this one continues on the new version.
    start_session(user)
    return jsonify({"ok": True})


@bp.post("/reset-password")
@admin_required
def password_reset():
    caller = current_caller()
    body = json_body()
    s = db_session()
    temp = reset_password(
        s,
        caller,
        _target_id(body),
        length=current_app.config.get("TEMP_PASSWORD_LENGTH", 8),
    )
    s.commit()
    return jsonify({"ok": True, "temporaryPassword": temp})


@bp.post("/default-app")
@login_required
def default_app():
    caller = current_caller()
    body = json_body()
    s = db_session()
    user = set_default_app(s, caller, parse_optional_int(body.get("appId"), "appId"))
    s.commit()
    return jsonify({"ok": True, "defaultAppId": user.default_app_id})
