from dataclasses import asdict
from datetime import date

from flask import Blueprint, jsonify

from app.portal.account import json_body
from app.portal.accounts import create_organisation, create_role
from app.portal.db import db_session
from app.portal.errors import ValidationError
from app.portal.memberships import (
    admin_dashboard_summary,
    admin_member_list,
    format_uk_date,
    member_detail,
    parse_uk_date,
    upsert_membership,
)
from app.portal.rbac import admin_required, current_caller
from app.portal.redemptions import benefit_redemption_stats, set_redeemed_benefits
from app.portal.utils import clean_str, optional_str, parse_bool, parse_optional_int

bp = Blueprint("admin", __name__)


def _jsonable(value):
    if isinstance(value, date):
        return format_uk_date(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


@bp.get("/dashboard")
@admin_required
def dashboard():
    summary = admin_dashboard_summary(db_session())
    return jsonify({"ok": True, **asdict(summary)})


@bp.get("/members")
@admin_required
def members_list():
    rows = admin_member_list(db_session())
    return jsonify({"ok": True, "members": [asdict(r) for r in rows]})


@bp.get("/members/<int:user_id>")
@admin_required
def member_get(user_id: int):
    detail = member_detail(db_session(), user_id)
    return jsonify({"ok": True, "member": _jsonable(asdict(detail))})


@bp.post("/members/<int:user_id>/redeemed-benefits")
@admin_required
def member_redeemed_benefits(user_id: int):
    body = json_body()
    ids = body.get("benefitIds")
    if not isinstance(ids, list):
        raise ValidationError("benefitIds must be a list.", field="benefitIds")
    s = db_session()
    codes = set_redeemed_benefits(s, current_caller(), user_id, ids)
    s.commit()
    return jsonify({"ok": True, "userId": user_id, "redeemedBenefitCodes": sorted(codes)})


@bp.post("/members/<int:user_id>/membership")
@admin_required
def member_membership(user_id: int):
    body = json_body()
    tier_id = parse_optional_int(body.get("membershipTierId"), "membershipTierId")
    if tier_id is None:
        raise ValidationError("A membership tier is required.", field="membershipTierId")
    s = db_session()
    m = upsert_membership(
        s,
        user_id,
        parse_optional_int(body.get("organisationId"), "organisationId"),
        tier_id,
        status=clean_str(body.get("status")) or None,
        manager_name=optional_str(body.get("managerName")),
        expiry=parse_uk_date(clean_str(body.get("expiryText"))),
        is_active=parse_bool(body.get("isActive"), "isActive", True),
        actor=current_caller(),
    )
    s.commit()
    return jsonify(
        {
            "ok": True,
            "membership": {
                "id": m.id,
                "userId": m.user_id,
                "organisationId": m.organisation_id,
                "tierKey": m.tier.key,
                "status": m.status,
                "isActive": m.is_active,
                "expiryText": format_uk_date(m.expiry),
                "managerName": m.manager_name,
            },
        }
    )


@bp.get("/benefits/stats")
@admin_required
def benefits_stats():
    stats = benefit_redemption_stats(db_session())
    return jsonify({"ok": True, "stats": [asdict(st) for st in stats]})


@bp.post("/organisations")
@admin_required
def organisation_create():
    body = json_body()
    s = db_session()
    org = create_organisation(s, current_caller(), body.get("name") or "", body.get("type") or "")
    s.commit()
    return jsonify({"ok": True, "organisation": {"id": org.id, "name": org.name, "slug": org.slug, "type": org.type}}), 201


@bp.post("/roles")
@admin_required
def role_create():
    body = json_body()
    s = db_session()
    role = create_role(s, current_caller(), body.get("key") or "", body.get("label") or "")
    s.commit()
    return jsonify({"ok": True, "role": {"id": role.id, "key": role.key, "label": role.label}}), 201
