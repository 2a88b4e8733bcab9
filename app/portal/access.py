"""
Entitlement resolver: app access and benefit eligibility.

Decisions are recomputed from the database on every call. Role overrides are
checked first (ADMIN for every app, then the per-app bypass table), then the
member's tier rank against the app's ALLOW rules, where the lowest ALLOW tier
is the effective minimum.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.portal.benefits import BENEFITS, Benefit, get_benefit
from app.portal.constants import (
    ACCESS_TYPE_ALLOW,
    APP_BYPASS_ROLES,
    APP_MEMBERSHIP_DASHBOARD,
    APP_PATHS,
    APP_TALENT_DISCOVERY,
    ROLE_ADMIN,
    ROLE_STUDENT,
)
from app.portal.errors import NotFoundError
from app.portal.memberships import pick_highest
from app.portal.models import App, User
from app.portal.tiers import TierKey, meets, rank

logger = logging.getLogger(__name__)


def decide_app_access(
    role_keys: Iterable[str],
    member_rank: int | None,
    app_key: str,
    app_exists: bool,
    allow_ranks: Iterable[int],
    bypass_roles: Mapping[str, Iterable[str]] | None = None,
) -> bool:
    """Pure access decision; `can_access_app` gathers the inputs."""
    roles = frozenset(role_keys)
    if ROLE_ADMIN in roles:
        return True
    if not app_exists:
        return False
    bypass = (bypass_roles if bypass_roles is not None else APP_BYPASS_ROLES).get(app_key) or ()
    if roles.intersection(bypass):
        return True
    if member_rank is None:
        return False
    ranks = list(allow_ranks)
    # No rules -> default deny
    if not ranks:
        return False
    return meets(member_rank, min(ranks))


def _allow_ranks(app: App) -> list[int]:
    return [
        rule.min_tier.rank
        for rule in app.access_rules
        if rule.access_type == ACCESS_TYPE_ALLOW and rule.min_tier is not None
    ]


def member_rank(user: User) -> int | None:
    m = pick_highest(user.memberships)
    return m.tier.rank if m else None


def can_access_app(
    s: Session,
    user_id: int,
    app_key: str,
    bypass_roles: Mapping[str, Iterable[str]] | None = None,
) -> bool:
    """Unknown user -> deny. Unknown app -> deny unless ADMIN. Internal error -> deny."""
    try:
        user = s.get(User, user_id)
        if not user or not user.is_active:
            return False
        app = s.query(App).filter(App.key == app_key).one_or_none()
        return decide_app_access(
            user.role_keys,
            member_rank(user),
            app_key,
            app is not None,
            _allow_ranks(app) if app else (),
            bypass_roles,
        )
    except Exception:
        logger.exception("can_access_app failed (user=%s app=%s); denying", user_id, app_key)
        return False


def accessible_apps(
    s: Session,
    user_id: int,
    bypass_roles: Mapping[str, Iterable[str]] | None = None,
) -> list[str]:
    keys = [k for (k,) in s.query(App.key).order_by(App.key.asc()).all()]
    return [k for k in keys if can_access_app(s, user_id, k, bypass_roles)]


# ---------------------------------------------------------------------------
# Benefits
# ---------------------------------------------------------------------------


class BenefitState(str, enum.Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    REDEEMED = "redeemed"


@dataclass(frozen=True)
class BenefitView:
    benefit: Benefit
    state: BenefitState


def can_access_benefit(member_rank: int | None, tier_min: TierKey | str) -> bool:
    return meets(member_rank, rank(tier_min))


def superseded_ids(member_rank: int | None, catalog: Iterable[Benefit] = BENEFITS) -> frozenset[str]:
    """Ids hidden because the member qualifies for a benefit that supersedes them."""
    hidden: set[str] = set()
    if member_rank is None:
        return frozenset()
    for b in catalog:
        if b.supersedes and meets(member_rank, b.min_rank):
            hidden.update(b.supersedes)
    return frozenset(hidden)


def benefit_state(benefit: Benefit, member_rank: int | None, redeemed: Iterable[str] = ()) -> BenefitState:
    if not can_access_benefit(member_rank, benefit.tier_min):
        return BenefitState.LOCKED
    if benefit.id in frozenset(redeemed):
        return BenefitState.REDEEMED
    return BenefitState.AVAILABLE


def effective_benefits(
    member_rank: int | None,
    redeemed: Iterable[str] = (),
    catalog: Iterable[Benefit] = BENEFITS,
) -> list[BenefitView]:
    catalog = list(catalog)
    redeemed_set = frozenset(redeemed)
    hidden = superseded_ids(member_rank, catalog)
    return [
        BenefitView(benefit=b, state=benefit_state(b, member_rank, redeemed_set))
        for b in catalog
        if b.id not in hidden
    ]


def count_states(views: Iterable[BenefitView]) -> dict[str, int]:
    counts = {state.value: 0 for state in BenefitState}
    for v in views:
        counts[v.state.value] += 1
    return counts


def benefit_status_for_member(s: Session, user_id: int | None, benefit_id: str) -> tuple[Benefit, BenefitState]:
    """Status of one catalog benefit for a (possibly anonymous) viewer."""
    from app.portal.redemptions import get_redeemed_benefits

    benefit = get_benefit(benefit_id)
    if benefit is None:
        raise NotFoundError("Benefit not found.", benefit_id=benefit_id)
    if user_id is None:
        return benefit, BenefitState.LOCKED
    user = s.get(User, user_id)
    if not user:
        return benefit, BenefitState.LOCKED
    return benefit, benefit_state(benefit, member_rank(user), get_redeemed_benefits(s, user_id))


# ---------------------------------------------------------------------------
# Post sign-in routing
# ---------------------------------------------------------------------------


def landing_path(role_keys: Iterable[str], default_app_key: str | None) -> str:
    roles = frozenset(role_keys)
    # Admins always land on the membership dashboard (admin view lives there).
    if ROLE_ADMIN in roles:
        return APP_PATHS[APP_MEMBERSHIP_DASHBOARD]
    if not default_app_key:
        return "/"
    base = APP_PATHS.get(default_app_key)
    if not base:
        return "/"
    if default_app_key == APP_TALENT_DISCOVERY:
        view = "student" if ROLE_STUDENT in roles else "job-board"
        return f"{base}?view={view}"
    return base


def talent_discovery_view(role_keys: Iterable[str], member_rank: int | None) -> str | None:
    """student | full | job-board, or None when nothing applies."""
    roles = frozenset(role_keys)
    if ROLE_ADMIN in roles or meets(member_rank, rank(TierKey.GOLD)):
        return "full"
    if ROLE_STUDENT in roles:
        return "student"
    if meets(member_rank, rank(TierKey.BRONZE)):
        return "job-board"
    return None
