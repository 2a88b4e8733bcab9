"""
Idempotent reference data: tiers, roles, apps with their ALLOW rules.

Used by scripts/init_db.py (release phase) and by the test fixtures. Existing
rows are updated in place; nothing is deleted.
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from app.portal.constants import ACCESS_TYPE_ALLOW, APP_SEED, ROLE_SEED
from app.portal.models import App, AppAccessRule, MembershipTier, Role
from app.portal.tiers import TIER_SEED


def ensure_tiers(s: Session) -> dict[str, MembershipTier]:
    tiers: dict[str, MembershipTier] = {}
    for key, label, rank in TIER_SEED:
        t = s.query(MembershipTier).filter(MembershipTier.key == key).one_or_none()
        if not t:
            t = MembershipTier(key=key, label=label, rank=rank)
            s.add(t)
        else:
            t.label = label
            t.rank = rank
        tiers[key] = t
    s.flush()
    return tiers


def ensure_roles(s: Session) -> dict[str, Role]:
    roles: dict[str, Role] = {}
    for key, label in ROLE_SEED:
        r = s.query(Role).filter(Role.key == key).one_or_none()
        if not r:
            r = Role(key=key, label=label)
            s.add(r)
        roles[key] = r
    s.flush()
    return roles


def ensure_apps(s: Session, tiers: dict[str, MembershipTier]) -> dict[str, App]:
    apps: dict[str, App] = {}
    for key, name, tier_keys in APP_SEED:
        a = s.query(App).filter(App.key == key).one_or_none()
        if not a:
            a = App(key=key, name=name)
            s.add(a)
        have = {(r.access_type, r.min_tier_id) for r in a.access_rules}
        for tier_key in tier_keys:
            tier = tiers[tier_key]
            if (ACCESS_TYPE_ALLOW, tier.id) not in have:
                a.access_rules.append(AppAccessRule(access_type=ACCESS_TYPE_ALLOW, min_tier_id=tier.id, min_tier=tier))
        apps[key] = a
    s.flush()
    return apps


def seed_reference_data(s: Session) -> None:
    tiers = ensure_tiers(s)
    ensure_roles(s)
    ensure_apps(s, tiers)
