"""
Benefit redemption tracker.

One record per user holding the full set of redeemed benefit ids. Writes are
full replacements computed by the caller, so repeating a write is a no-op.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.portal.audit import record_event
from app.portal.benefits import BENEFITS, validate_benefit_ids
from app.portal.errors import NotFoundError
from app.portal.memberships import active_member_query, get_active_membership
from app.portal.models import Membership, RedemptionRecord, User
from app.portal.rbac import Caller, require_admin
from app.portal.tiers import meets

logger = logging.getLogger(__name__)


def get_redeemed_benefits(s: Session, user_id: int) -> frozenset[str]:
    record = s.query(RedemptionRecord).filter(RedemptionRecord.user_id == user_id).one_or_none()
    if record is None:
        return frozenset()
    return frozenset(record.redeemed_benefit_codes or [])


def _member_key(user: User) -> str:
    if user.organisation is not None:
        return user.organisation.slug
    return f"user-{user.id}"


def set_redeemed_benefits(s: Session, actor: Caller, user_id: int, benefit_ids: Iterable[str]) -> frozenset[str]:
    require_admin(actor, action="set_redeemed_benefits")
    codes = validate_benefit_ids(benefit_ids)

    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")

    record = user.redemption_record
    before = sorted(record.redeemed_benefit_codes or []) if record else []
    if record is None:
        active = get_active_membership(s, user_id)
        record = RedemptionRecord(
            user=user,
            membership_id=active.id if active else None,
            member_key=_member_key(user),
        )
        s.add(record)

    record.redeemed_benefit_codes = sorted(codes)
    record.updated_at = datetime.utcnow()
    s.flush()

    if before != record.redeemed_benefit_codes:
        record_event(
            s,
            actor=actor,
            action="benefits.redeemed_set",
            entity_type="User",
            entity_id=str(user_id),
            metadata={"before": before, "after": record.redeemed_benefit_codes},
        )
        logger.info("Redeemed benefits for user=%s set to %s", user_id, record.redeemed_benefit_codes)
    return codes


@dataclass(frozen=True)
class BenefitRedemptionStat:
    benefit_id: str
    eligible: int
    redeemed: int
    percent: int | None  # None when nobody is eligible


def benefit_redemption_stats(s: Session) -> list[BenefitRedemptionStat]:
    rows: list[Membership] = active_member_query(s).all()
    members = [
        (m.tier.rank, frozenset(m.user.redemption_record.redeemed_benefit_codes or []) if m.user.redemption_record else frozenset())
        for m in rows
    ]
    out = []
    for b in BENEFITS:
        eligible = [redeemed for tier_rank, redeemed in members if meets(tier_rank, b.min_rank)]
        redeemed_count = sum(1 for r in eligible if b.id in r)
        percent = None if not eligible else int(redeemed_count * 100 / len(eligible) + 0.5)
        out.append(
            BenefitRedemptionStat(
                benefit_id=b.id,
                eligible=len(eligible),
                redeemed=redeemed_count,
                percent=percent,
            )
        )
    return out
