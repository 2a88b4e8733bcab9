"""App access decisions and post sign-in routing."""
import pytest

from app.portal import access
from app.portal.access import (
    accessible_apps,
    can_access_app,
    decide_app_access,
    landing_path,
    talent_discovery_view,
)
from app.portal.db import session_scope
from app.portal.models import User


def test_decision_order_admin_first():
    assert decide_app_access({"ADMIN"}, None, "NO_SUCH_APP", False, []) is True
    assert decide_app_access({"MEMBER"}, 4, "NO_SUCH_APP", False, []) is False


def test_decision_without_rules_denies():
    assert decide_app_access({"MEMBER"}, 4, "EMPTY_APP", True, []) is False


def test_decision_uses_lowest_allow_tier():
    # Rules for bronze and gold: bronze is the effective minimum.
    assert decide_app_access({"MEMBER"}, 1, "TALENT_DISCOVERY", True, [3, 1]) is True
    assert decide_app_access({"MEMBER"}, None, "TALENT_DISCOVERY", True, [3, 1]) is False


def test_decision_bypass_roles():
    bypass = {"IXN_WORKFLOW_MANAGER": {"MODULE_LEADER"}}
    assert decide_app_access({"MODULE_LEADER"}, None, "IXN_WORKFLOW_MANAGER", True, [2], bypass) is True
    assert decide_app_access({"MODULE_LEADER"}, None, "MEMBERSHIP_DASHBOARD", True, [1], bypass) is False
    assert decide_app_access({"MODULE_LEADER"}, None, "IXN_WORKFLOW_MANAGER", True, [2], {}) is False


@pytest.mark.parametrize("required", [1, 2, 3, 4])
def test_decision_rank_monotonic(required):
    granted = [decide_app_access({"MEMBER"}, r, "X", True, [required]) for r in (1, 2, 3, 4)]
    assert granted == [r >= required for r in (1, 2, 3, 4)]


def test_bronze_member_app_access(app, people):
    with session_scope(app) as s:
        uid = people["bronze"]
        assert can_access_app(s, uid, "MEMBERSHIP_DASHBOARD") is True
        assert can_access_app(s, uid, "IXN_WORKFLOW_MANAGER") is False
        assert can_access_app(s, uid, "TALENT_DISCOVERY") is True
        assert can_access_app(s, uid, "NO_SUCH_APP") is False


def test_gold_member_accessible_apps(app, people):
    with session_scope(app) as s:
        assert accessible_apps(s, people["gold"]) == [
            "IXN_WORKFLOW_MANAGER",
            "MEMBERSHIP_DASHBOARD",
            "TALENT_DISCOVERY",
        ]


def test_admin_without_membership_opens_everything(app, people):
    with session_scope(app) as s:
        assert can_access_app(s, people["admin"], "IXN_WORKFLOW_MANAGER") is True
        assert can_access_app(s, people["admin"], "NO_SUCH_APP") is True


def test_module_leader_bypass_and_student_denied(app, people):
    with session_scope(app) as s:
        assert can_access_app(s, people["leader"], "IXN_WORKFLOW_MANAGER") is True
        assert can_access_app(s, people["leader"], "MEMBERSHIP_DASHBOARD") is False
        assert accessible_apps(s, people["student"]) == []


def test_unknown_or_inactive_user_denied(app, people):
    with session_scope(app) as s:
        assert can_access_app(s, 999_999, "MEMBERSHIP_DASHBOARD") is False
        s.get(User, people["gold"]).is_active = False
        s.flush()
        assert can_access_app(s, people["gold"], "MEMBERSHIP_DASHBOARD") is False


def test_access_fails_closed(app, people, monkeypatch):
    def boom(user):
        raise RuntimeError("db went away")

    monkeypatch.setattr(access, "member_rank", boom)
    with session_scope(app) as s:
        assert can_access_app(s, people["gold"], "MEMBERSHIP_DASHBOARD") is False


def test_landing_path():
    assert landing_path({"ADMIN"}, "TALENT_DISCOVERY") == "/membership-dashboard"
    assert landing_path({"MEMBER"}, None) == "/"
    assert landing_path({"MEMBER"}, "IXN_WORKFLOW_MANAGER") == "/ixn-workflow-manager"
    assert landing_path({"STUDENT"}, "TALENT_DISCOVERY") == "/talent-discovery?view=student"
    assert landing_path({"MEMBER"}, "TALENT_DISCOVERY") == "/talent-discovery?view=job-board"
    assert landing_path({"MEMBER"}, "UNKNOWN") == "/"


def test_talent_discovery_view():
    assert talent_discovery_view({"ADMIN"}, None) == "full"
    assert talent_discovery_view({"MEMBER"}, 3) == "full"
    assert talent_discovery_view({"STUDENT"}, None) == "student"
    assert talent_discovery_view({"MEMBER"}, 1) == "job-board"
    assert talent_discovery_view({"MODULE_LEADER"}, None) is None


def test_talent_discovery_silver_member_allowed_roleless_user_denied(app, people, make_user):
    with session_scope(app) as s:
        acme = s.get(User, people["gold"]).organisation
        silver = make_user(s, "silver@example.com", roles=("MEMBER",), org=acme, tier="silver")
        nobody = make_user(s, "nobody@example.com")
        assert can_access_app(s, silver.id, "TALENT_DISCOVERY") is True
        assert can_access_app(s, nobody.id, "TALENT_DISCOVERY") is False
