"""
Membership tier ranking.

Rank is the only comparable quantity for tier decisions: never compare tiers by
key or label.
"""
from __future__ import annotations

import enum

from app.portal.errors import ValidationError


class TierKey(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


TIER_RANK: dict[TierKey, int] = {
    TierKey.BRONZE: 1,
    TierKey.SILVER: 2,
    TierKey.GOLD: 3,
    TierKey.PLATINUM: 4,
}

TIER_LABELS: dict[TierKey, str] = {
    TierKey.BRONZE: "Bronze",
    TierKey.SILVER: "Silver",
    TierKey.GOLD: "Gold",
    TierKey.PLATINUM: "Platinum",
}

# (key, label, rank) rows for the membership_tiers table.
TIER_SEED: tuple[tuple[str, str, int], ...] = tuple(
    (k.value, TIER_LABELS[k], TIER_RANK[k]) for k in sorted(TIER_RANK, key=TIER_RANK.__getitem__)
)


def normalise_tier_key(value: TierKey | str | None) -> TierKey | None:
    if value is None:
        return None
    if isinstance(value, TierKey):
        return value
    try:
        return TierKey(str(value).strip().lower())
    except ValueError:
        return None


def rank(tier_key: TierKey | str) -> int:
    key = normalise_tier_key(tier_key)
    if key is None:
        raise ValidationError(f"Unknown membership tier: {tier_key}")
    return TIER_RANK[key]


def meets(candidate_rank: int | None, required_rank: int) -> bool:
    """True when a member at `candidate_rank` satisfies a `required_rank` minimum."""
    if candidate_rank is None:
        return False
    return candidate_rank >= required_rank
