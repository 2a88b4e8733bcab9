"""
Membership record manager.

A user has at most one active membership. Every write goes through
`upsert_membership` (update-in-place when an active row exists, insert
otherwise), so the invariant holds by construction; `find_active_membership_violations`
checks it over the whole table for the maintenance script.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.portal.audit import record_event
from app.portal.constants import (
    DEFAULT_MANAGER_NAME,
    MEMBERSHIP_STATUS_ACTIVE,
    MEMBERSHIP_STATUS_INACTIVE,
    ROLE_MEMBER,
)
from app.portal.errors import NotFoundError, ValidationError
from app.portal.models import Membership, MembershipTier, Organisation, Role, User

if TYPE_CHECKING:
    from app.portal.rbac import Caller

logger = logging.getLogger(__name__)

_UK_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


def parse_uk_date(text: str | None) -> date | None:
    """
    Parse a dd/mm/yyyy date. Empty input means "no date".

    The constructed date must round-trip exactly: 31/02/2026 is rejected rather
    than rolled over into March.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    m = _UK_DATE_RE.match(raw)
    if not m:
        raise ValidationError("Date must be in dd/mm/yyyy format.", field="expiry")
    dd, mm, yyyy = (int(x) for x in m.groups())
    try:
        d = date(yyyy, mm, dd)
    except ValueError:
        raise ValidationError("Invalid date.", field="expiry") from None
    if (d.day, d.month, d.year) != (dd, mm, yyyy):
        raise ValidationError("Invalid date.", field="expiry")
    return d


def format_uk_date(value: date | None) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def _coerce_expiry(expiry: date | str | None) -> date | None:
    if expiry is None or isinstance(expiry, date):
        return expiry
    return parse_uk_date(expiry)


def _by_rank_then_id(m: Membership) -> tuple[int, int]:
    return (-m.tier.rank, m.id or 0)


def pick_highest(memberships: list[Membership]) -> Membership | None:
    """Highest tier rank wins; ties go to the oldest row so the choice is stable."""
    active = [m for m in memberships if m.is_active]
    if not active:
        return None
    return sorted(active, key=_by_rank_then_id)[0]


def active_memberships(s: Session, user_id: int) -> list[Membership]:
    return (
        s.query(Membership)
        .join(MembershipTier, Membership.tier_id == MembershipTier.id)
        .filter(Membership.user_id == user_id, Membership.is_active.is_(True))
        .order_by(MembershipTier.rank.desc(), Membership.id.asc())
        .all()
    )


def get_active_membership(s: Session, user_id: int) -> Membership | None:
    rows = active_memberships(s, user_id)
    return rows[0] if rows else None


def upsert_membership(
    s: Session,
    user_id: int,
    organisation_id: int | None,
    tier_id: int,
    status: str | None = MEMBERSHIP_STATUS_ACTIVE,
    manager_name: str | None = None,
    expiry: date | str | None = None,
    is_active: bool = True,
    *,
    actor: "Caller | None" = None,
) -> Membership:
    """
    Create or update the user's single active membership.

    The user must already belong to an organisation. When `organisation_id` is
    None the user's organisation is copied onto the membership.
    """
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")
    if not user.organisation_id:
        raise ValidationError(
            "To assign a membership tier, the user must have an organisation set.",
            field="organisation",
        )
    tier = s.get(MembershipTier, tier_id)
    if not tier:
        raise NotFoundError("Membership tier not found.")
    org_id = organisation_id or user.organisation_id
    if not s.get(Organisation, org_id):
        raise NotFoundError("Organisation not found.")

    expiry_date = _coerce_expiry(expiry)
    now = datetime.utcnow()

    existing = active_memberships(s, user_id)
    if existing:
        membership = existing[0]
        # Extra active rows can only come from writes that bypassed this function.
        for extra in existing[1:]:
            logger.warning("Deactivating duplicate active membership id=%s for user=%s", extra.id, user_id)
            extra.is_active = False
            extra.status = MEMBERSHIP_STATUS_INACTIVE
            extra.updated_at = now
        created = False
    else:
        membership = Membership(user=user, created_at=now)
        s.add(membership)
        created = True

    before = None if created else {
        "tier": membership.tier.key if membership.tier else None,
        "status": membership.status,
        "is_active": membership.is_active,
        "expiry": format_uk_date(membership.expiry),
    }

    membership.organisation_id = org_id
    membership.tier_id = tier.id
    membership.tier = tier
    membership.status = status if status is not None else MEMBERSHIP_STATUS_ACTIVE
    membership.manager_name = manager_name
    membership.expiry = expiry_date
    membership.is_active = bool(is_active)
    membership.updated_at = now
    s.flush()

    record_event(
        s,
        actor=actor,
        action="membership.create" if created else "membership.update",
        entity_type="Membership",
        entity_id=str(membership.id),
        metadata={
            "user_id": user_id,
            "before": before,
            "after": {
                "tier": tier.key,
                "status": membership.status,
                "is_active": membership.is_active,
                "expiry": format_uk_date(expiry_date),
            },
        },
    )
    logger.info("Membership %s for user=%s tier=%s", "created" if created else "updated", user_id, tier.key)
    return membership


def deactivate_membership(s: Session, user_id: int, *, actor: "Caller | None" = None) -> Membership | None:
    """
    Clear a user's membership when the MEMBER role is taken away.

    The row is kept (is_active=False, status "inactive"). Granting MEMBER again
    does not revive it; a new tier assignment creates a fresh active row.
    """
    rows = active_memberships(s, user_id)
    if not rows:
        return None
    now = datetime.utcnow()
    for m in rows:
        m.is_active = False
        m.status = MEMBERSHIP_STATUS_INACTIVE
        m.updated_at = now
    s.flush()
    record_event(
        s,
        actor=actor,
        action="membership.deactivate",
        entity_type="Membership",
        entity_id=str(rows[0].id),
        metadata={"user_id": user_id, "count": len(rows)},
    )
    return rows[0]


def find_active_membership_violations(s: Session) -> list[int]:
    """User ids holding more than one active membership (should always be empty)."""
    rows = (
        s.query(Membership.user_id)
        .filter(Membership.is_active.is_(True))
        .group_by(Membership.user_id)
        .having(func.count(Membership.id) > 1)
        .order_by(Membership.user_id.asc())
        .all()
    )
    return [r[0] for r in rows]


# ---------------------------------------------------------------------------
# Dashboard read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierSummary:
    id: int
    key: str
    label: str
    rank: int
    count: int


@dataclass(frozen=True)
class DashboardSummary:
    total_members: int
    tiers: list[TierSummary]


@dataclass(frozen=True)
class MemberListItem:
    user_id: int
    organisation_name: str
    contact_name: str
    tier_key: str
    tier_label: str
    tier_rank: int


@dataclass(frozen=True)
class MemberDetail:
    user_id: int
    first_name: str
    contact_name: str
    organisation_name: str | None
    tier_key: str | None
    tier_label: str
    tier_rank: int | None
    status: str | None
    expiry: date | None
    manager_name: str
    role_keys: list[str]
    default_app_key: str | None
    default_app_name: str | None
    redeemed_benefit_codes: list[str]


def active_member_query(s: Session):
    q = s.query(Membership).filter(Membership.is_active.is_(True))
    member_role = s.query(Role).filter(Role.key == ROLE_MEMBER).one_or_none()
    if member_role:
        q = q.join(User, Membership.user_id == User.id).filter(User.roles.any(Role.id == member_role.id))
    return q


def admin_dashboard_summary(s: Session) -> DashboardSummary:
    counts = dict(
        active_member_query(s)
        .with_entities(Membership.tier_id, func.count(Membership.id))
        .group_by(Membership.tier_id)
        .all()
    )
    tiers = [
        TierSummary(id=t.id, key=t.key, label=t.label, rank=t.rank, count=int(counts.get(t.id, 0)))
        for t in s.query(MembershipTier).order_by(MembershipTier.rank.asc()).all()
    ]
    return DashboardSummary(total_members=sum(t.count for t in tiers), tiers=tiers)


def admin_member_list(s: Session) -> list[MemberListItem]:
    """Active MEMBER memberships, highest tier first, then organisation name."""
    rows = (
        active_member_query(s)
        .join(MembershipTier, Membership.tier_id == MembershipTier.id)
        .join(Organisation, Membership.organisation_id == Organisation.id)
        .order_by(MembershipTier.rank.desc(), Organisation.name.asc(), Membership.id.asc())
        .all()
    )
    return [
        MemberListItem(
            user_id=m.user_id,
            organisation_name=m.organisation.name,
            contact_name=m.user.name,
            tier_key=m.tier.key,
            tier_label=m.tier.label,
            tier_rank=m.tier.rank,
        )
        for m in rows
    ]


def member_detail(s: Session, user_id: int) -> MemberDetail:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")
    membership = get_active_membership(s, user_id)
    record = user.redemption_record
    org_name = user.organisation.name if user.organisation else None
    if org_name is None and membership is not None:
        org_name = membership.organisation.name
    manager = membership.manager_name if membership and (membership.manager_name or "").strip() else None
    return MemberDetail(
        user_id=user.id,
        first_name=user.first_name,
        contact_name=user.name,
        organisation_name=org_name,
        tier_key=membership.tier.key if membership else None,
        tier_label=membership.tier.label if membership else "Unknown tier",
        tier_rank=membership.tier.rank if membership else None,
        status=membership.status if membership else None,
        expiry=membership.expiry if membership else None,
        manager_name=manager or DEFAULT_MANAGER_NAME,
        role_keys=sorted(user.role_keys),
        default_app_key=user.default_app.key if user.default_app else None,
        default_app_name=user.default_app.name if user.default_app else None,
        redeemed_benefit_codes=sorted(record.redeemed_benefit_codes or []) if record else [],
    )
