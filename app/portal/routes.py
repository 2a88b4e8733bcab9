from flask import Blueprint, current_app, jsonify

from app.portal.access import (
    BenefitView,
    accessible_apps,
    benefit_status_for_member,
    can_access_app,
    count_states,
    effective_benefits,
    landing_path,
    member_rank,
    talent_discovery_view,
)
from app.portal.benefits import Benefit
from app.portal.db import db_session
from app.portal.models import User
from app.portal.rbac import current_caller, login_required
from app.portal.redemptions import get_redeemed_benefits

bp = Blueprint("routes", __name__)


def benefit_json(benefit: Benefit, state: str | None = None) -> dict:
    out = {
        "id": benefit.id,
        "tierMin": benefit.tier_min.value,
        "category": benefit.category,
        "label": benefit.label,
    }
    if state is not None:
        out["state"] = state
    return out


def _view_json(v: BenefitView) -> dict:
    return benefit_json(v.benefit, v.state.value)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/apps/<app_key>/access")
@login_required
def app_access(app_key: str):
    caller = current_caller()
    s = db_session()
    allowed = can_access_app(s, caller.user_id, app_key, current_app.config.get("APP_BYPASS_ROLES"))
    return jsonify({"ok": True, "app": app_key, "allowed": allowed})


@bp.get("/apps")
@login_required
def apps_list():
    caller = current_caller()
    s = db_session()
    return jsonify({"ok": True, "apps": accessible_apps(s, caller.user_id, current_app.config.get("APP_BYPASS_ROLES"))})


@bp.get("/apps/landing")
@login_required
def apps_landing():
    caller = current_caller()
    user = db_session().get(User, caller.user_id)
    default_key = user.default_app.key if user and user.default_app else None
    rank_ = member_rank(user) if user else None
    return jsonify(
        {
            "ok": True,
            "path": landing_path(caller.role_keys, default_key),
            "talentDiscoveryView": talent_discovery_view(caller.role_keys, rank_),
        }
    )


@bp.get("/benefits")
@login_required
def benefits_list():
    caller = current_caller()
    s = db_session()
    user = s.get(User, caller.user_id)
    rank_ = member_rank(user) if user else None
    views = effective_benefits(rank_, get_redeemed_benefits(s, caller.user_id))
    return jsonify(
        {
            "ok": True,
            "tierRank": rank_,
            "benefits": [_view_json(v) for v in views],
            "counts": count_states(views),
        }
    )


@bp.get("/benefits/<benefit_id>")
def benefit_detail(benefit_id: str):
    """Anonymous viewers see every benefit as locked."""
    caller = current_caller()
    benefit, state = benefit_status_for_member(db_session(), caller.user_id if caller else None, benefit_id)
    return jsonify({"ok": True, "benefit": benefit_json(benefit, state.value)})
