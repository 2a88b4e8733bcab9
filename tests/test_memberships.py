"""Membership record manager and admin dashboard read models."""
from datetime import date

import pytest

from app.portal.db import session_scope
from app.portal.errors import NotFoundError, ValidationError
from app.portal.memberships import (
    active_memberships,
    admin_dashboard_summary,
    admin_member_list,
    deactivate_membership,
    find_active_membership_violations,
    format_uk_date,
    get_active_membership,
    member_detail,
    parse_uk_date,
    upsert_membership,
)
from app.portal.models import AuditEvent, Membership


def test_parse_uk_date():
    assert parse_uk_date("01/03/2027") == date(2027, 3, 1)
    d = parse_uk_date("28/02/2026")
    assert (d.day, d.month, d.year) == (28, 2, 2026)
    assert format_uk_date(d) == "28/02/2026"
    assert parse_uk_date("") is None
    assert parse_uk_date(None) is None
    assert format_uk_date(date(2027, 3, 1)) == "01/03/2027"
    for bad in ("31/02/2026", "2026-01-01", "1/3/2027", "00/01/2026"):
        with pytest.raises(ValidationError) as exc:
            parse_uk_date(bad)
        assert exc.value.details["field"] == "expiry"


def test_upsert_updates_in_place(app, people, tier_ids):
    with session_scope(app) as s:
        m1 = upsert_membership(s, people["gold"], None, tier_ids["platinum"], expiry="31/12/2027")
        m2 = upsert_membership(s, people["gold"], None, tier_ids["silver"], manager_name="Jo Bloggs")
        assert m1.id == m2.id
        rows = active_memberships(s, people["gold"])
        assert [m.tier.key for m in rows] == ["silver"]
        assert rows[0].expiry is None
        assert rows[0].manager_name == "Jo Bloggs"
        assert find_active_membership_violations(s) == []


def test_upsert_creates_when_none_active(app, people, tier_ids, make_user):
    with session_scope(app) as s:
        user = make_user(s, "new@example.com", roles=("MEMBER",))
        user.organisation_id = people["beta"]
        s.flush()
        m = upsert_membership(s, user.id, None, tier_ids["bronze"])
        assert m.organisation_id == people["beta"]
        assert m.status == "active"
        assert get_active_membership(s, user.id).id == m.id
        actions = [a for (a,) in s.query(AuditEvent.action).all()]
        assert "membership.create" in actions


def test_upsert_requires_organisation(app, people, tier_ids):
    with session_scope(app) as s:
        with pytest.raises(ValidationError) as exc:
            upsert_membership(s, people["student"], None, tier_ids["gold"])
        assert "organisation" in exc.value.message


def test_upsert_unknown_tier_or_user(app, people):
    with session_scope(app) as s:
        with pytest.raises(NotFoundError):
            upsert_membership(s, people["gold"], None, 999)
        with pytest.raises(NotFoundError):
            upsert_membership(s, 999_999, None, 1)


def test_upsert_collapses_duplicate_active_rows(app, people, tier_ids):
    with session_scope(app) as s:
        s.add(
            Membership(
                user_id=people["gold"],
                organisation_id=people["acme"],
                tier_id=tier_ids["bronze"],
                status="active",
                is_active=True,
            )
        )
        s.flush()
        assert find_active_membership_violations(s) == [people["gold"]]

        m = upsert_membership(s, people["gold"], None, tier_ids["gold"])
        rows = active_memberships(s, people["gold"])
        assert [r.id for r in rows] == [m.id]
        assert find_active_membership_violations(s) == []


def test_deactivate_keeps_row(app, people):
    with session_scope(app) as s:
        m = deactivate_membership(s, people["bronze"])
        assert m is not None
        assert m.is_active is False
        assert m.status == "inactive"
        assert get_active_membership(s, people["bronze"]) is None
        assert s.query(Membership).filter(Membership.user_id == people["bronze"]).count() == 1
        assert deactivate_membership(s, people["bronze"]) is None


def test_dashboard_summary_counts_active_members(app, people):
    with session_scope(app) as s:
        summary = admin_dashboard_summary(s)
        counts = {t.key: t.count for t in summary.tiers}
        assert counts == {"bronze": 1, "silver": 0, "gold": 1, "platinum": 0}
        assert summary.total_members == 2
        assert [t.rank for t in summary.tiers] == [1, 2, 3, 4]


def test_member_list_orders_by_tier_then_organisation(app, people):
    with session_scope(app) as s:
        rows = admin_member_list(s)
        assert [(r.organisation_name, r.tier_key) for r in rows] == [("Acme Ltd", "gold"), ("Beta Uni", "bronze")]
        assert rows[0].contact_name == "Gil User"


def test_member_detail_defaults_manager(app, people):
    with session_scope(app) as s:
        d = member_detail(s, people["gold"])
        assert d.organisation_name == "Acme Ltd"
        assert d.tier_label == "Gold"
        assert d.manager_name == "Marco Piccionello"
        assert d.redeemed_benefit_codes == []

        none = member_detail(s, people["student"])
        assert none.tier_key is None
        assert none.tier_label == "Unknown tier"
        with pytest.raises(NotFoundError):
            member_detail(s, 999_999)
