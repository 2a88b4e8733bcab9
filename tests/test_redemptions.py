"""Benefit redemption tracker."""
import pytest

from app.portal.access import benefit_status_for_member, BenefitState
from app.portal.db import session_scope
from app.portal.errors import ForbiddenError, NotFoundError, ValidationError
from app.portal.models import AuditEvent, RedemptionRecord, User
from app.portal.rbac import Caller
from app.portal.redemptions import benefit_redemption_stats, get_redeemed_benefits, set_redeemed_benefits


def _caller(s, user_id):
    return Caller.from_user(s.get(User, user_id))


def test_set_is_a_full_replacement_and_idempotent(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        set_redeemed_benefits(s, admin, people["gold"], ["B09", "B01"])
        set_redeemed_benefits(s, admin, people["gold"], ["B01", "B09"])
        assert get_redeemed_benefits(s, people["gold"]) == frozenset({"B01", "B09"})

        record = s.query(RedemptionRecord).filter(RedemptionRecord.user_id == people["gold"]).one()
        assert record.redeemed_benefit_codes == ["B01", "B09"]
        assert record.member_key == "acme-ltd"
        assert record.membership_id is not None

        events = s.query(AuditEvent).filter(AuditEvent.action == "benefits.redeemed_set").count()
        assert events == 1

        set_redeemed_benefits(s, admin, people["gold"], [])
        assert get_redeemed_benefits(s, people["gold"]) == frozenset()


def test_unknown_code_writes_nothing(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        with pytest.raises(ValidationError) as exc:
            set_redeemed_benefits(s, admin, people["gold"], ["B01", "B99"])
        assert exc.value.details["benefit_id"] == "B99"
        assert s.query(RedemptionRecord).count() == 0


def test_only_admins_record_redemptions(app, people):
    with session_scope(app) as s:
        member = _caller(s, people["gold"])
        with pytest.raises(ForbiddenError):
            set_redeemed_benefits(s, member, people["gold"], ["B01"])
        admin = _caller(s, people["admin"])
        with pytest.raises(NotFoundError):
            set_redeemed_benefits(s, admin, 999_999, ["B01"])


def test_benefit_status_for_member(app, people):
    with session_scope(app) as s:
        set_redeemed_benefits(s, _caller(s, people["admin"]), people["gold"], ["B01"])
        assert benefit_status_for_member(s, people["gold"], "B01")[1] is BenefitState.REDEEMED
        assert benefit_status_for_member(s, people["gold"], "B09")[1] is BenefitState.AVAILABLE
        assert benefit_status_for_member(s, people["gold"], "B13")[1] is BenefitState.LOCKED
        assert benefit_status_for_member(s, None, "B01")[1] is BenefitState.LOCKED
        with pytest.raises(NotFoundError):
            benefit_status_for_member(s, people["gold"], "B99")


def test_redemption_stats(app, people):
    with session_scope(app) as s:
        set_redeemed_benefits(s, _caller(s, people["admin"]), people["gold"], ["B01", "B09"])
        stats = {st.benefit_id: st for st in benefit_redemption_stats(s)}

        # gold + bronze members are both eligible for B01
        assert (stats["B01"].eligible, stats["B01"].redeemed, stats["B01"].percent) == (2, 1, 50)
        assert (stats["B09"].eligible, stats["B09"].redeemed, stats["B09"].percent) == (1, 1, 100)
        assert (stats["B02"].eligible, stats["B02"].redeemed, stats["B02"].percent) == (1, 0, 0)
        assert stats["B13"].eligible == 0
        assert stats["B13"].percent is None
