"""
Static benefit catalog.

Benefits are not persisted; redemption records store their ids only, so every
id written anywhere must be one of the ids below.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from app.portal.errors import ValidationError
from app.portal.tiers import TierKey, rank

CATEGORY_TALENT = "Workforce Development & Talent Acquisition"
CATEGORY_INNOVATION = "Innovation"
CATEGORY_PR = "PR & Networking"
CATEGORY_OPERATIONS = "Operations"


@dataclass(frozen=True)
class Benefit:
    id: str
    tier_min: TierKey
    category: str
    label: str
    supersedes: tuple[str, ...] = ()

    @property
    def min_rank(self) -> int:
        return rank(self.tier_min)


BENEFITS: tuple[Benefit, ...] = (
    Benefit("B01", TierKey.BRONZE, CATEGORY_INNOVATION, "IXN Undergraduate or Graduate Project Collaboration"),
    Benefit("B02", TierKey.SILVER, CATEGORY_PR, "Brand Visibility on the UCL Computer Science Website"),
    Benefit("B03", TierKey.SILVER, CATEGORY_TALENT, "Presentation Slot at a Student Careers Fair"),
    Benefit("B04", TierKey.SILVER, CATEGORY_TALENT, "Promotion of Up to Two Job Roles per Year"),
    Benefit("B05", TierKey.SILVER, CATEGORY_PR, "Invitation to the Student Project Showcase"),
    Benefit(
        "B06",
        TierKey.SILVER,
        CATEGORY_TALENT,
        "Sponsorship of a Student Engagement Event (Including Catering for 50)",
    ),
    Benefit("B07", TierKey.SILVER, CATEGORY_OPERATIONS, "Dedicated Strategic Alliances Client Experience Manager"),
    Benefit("B08", TierKey.SILVER, CATEGORY_TALENT, "Pop-Up Careers Fair Stand (Half Day)"),
    Benefit("B09", TierKey.GOLD, CATEGORY_TALENT, "Access to Curated UCL Short Courses"),
    Benefit("B10", TierKey.GOLD, CATEGORY_PR, "VIP Invitations to Departmental Special Events"),
    Benefit("B11", TierKey.GOLD, CATEGORY_TALENT, "Recruiter-in-Residence: On-Campus Interview Space"),
    Benefit(
        "B12",
        TierKey.GOLD,
        CATEGORY_INNOVATION,
        "Sponsorship and Participation in One Hackathon or Consultancy Challenge",
    ),
    Benefit("B13", TierKey.PLATINUM, CATEGORY_OPERATIONS, "Seat on the Friends of UCL Computer Science Steering Group"),
    Benefit("B14", TierKey.PLATINUM, CATEGORY_TALENT, "Executive Education Taster Session for up to 20 Leaders (1 Day)"),
    Benefit("B15", TierKey.PLATINUM, CATEGORY_TALENT, "Dedicated Support for Reverse Mentoring Programmes"),
    Benefit("B16", TierKey.PLATINUM, CATEGORY_PR, "Invitation to Network with PhD Researchers"),
    Benefit("B17", TierKey.PLATINUM, CATEGORY_TALENT, "Pop-Up Careers Fair Stand (Full Day)", supersedes=("B08",)),
)

BENEFITS_BY_ID: dict[str, Benefit] = {b.id: b for b in BENEFITS}
BENEFIT_IDS = frozenset(BENEFITS_BY_ID)


def normalise_benefit_id(benefit_id: object) -> str | None:
    """Catalog id for `benefit_id` (trimmed, case-insensitive), or None."""
    if not isinstance(benefit_id, str):
        return None
    code = benefit_id.strip().upper()
    return code if code in BENEFIT_IDS else None


def get_benefit(benefit_id: str) -> Benefit | None:
    code = normalise_benefit_id(benefit_id)
    return BENEFITS_BY_ID[code] if code else None


def validate_benefit_ids(benefit_ids: Iterable[str]) -> frozenset[str]:
    """Return the catalog ids as a set; raise on the first id not in the catalog."""
    out = set()
    for raw in benefit_ids:
        code = normalise_benefit_id(raw)
        if code is None:
            raise ValidationError(f"Unknown benefit code: {raw}", benefit_id=str(raw))
        out.add(code)
    return frozenset(out)
