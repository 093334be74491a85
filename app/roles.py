from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


# Canonical role -> every job code that means the same thing (regional variants included).
ROLE_GROUPS: Dict[str, List[str]] = {
    "Store Manager": ["STSUPER", "WVSTMNG"],
    "Assistant Manager": ["STASSTSP", "WVSTAST"],
    "Team Lead": ["STLDWKR", "WVLDWRK"],
    "Donor Greeter": ["DONDOOR", "WVDON"],
    "Donation Pricer": ["DONPRI", "DONPRWV"],
    "Apparel Processor": ["APPROC", "APWV"],
    "Cashier": ["CASHSLS", "CSHSLSWV"],
}

# Lower number = more senior. Only tiers 1 and 2 may open or close alone.
LEADERSHIP_TIERS: Dict[str, int] = {
    "Store Manager": 1,
    "Assistant Manager": 2,
    "Team Lead": 3,
}
HIGHER_TIER_CUTOFF = 2

PRODUCTION_ROLES = ("Donation Pricer", "Apparel Processor")
GREETER_ROLE = "Donor Greeter"
CASHIER_ROLE = "Cashier"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


_CODE_INDEX: Dict[str, str] = {
    normalize_code(code): role for role, codes in ROLE_GROUPS.items() for code in codes
}


def canonical_role(code: Optional[str]) -> Optional[str]:
    """Return the canonical role for a job code, or None when the code is not scheduled."""
    return _CODE_INDEX.get(normalize_code(code))


def is_leadership_role(role: Optional[str]) -> bool:
    return role in LEADERSHIP_TIERS


def leadership_tier(role: Optional[str]) -> Optional[int]:
    return LEADERSHIP_TIERS.get(role or "")


def is_higher_tier(role: Optional[str]) -> bool:
    tier = leadership_tier(role)
    return tier is not None and tier <= HIGHER_TIER_CUTOFF


def is_production_role(role: Optional[str]) -> bool:
    return role in PRODUCTION_ROLES


@dataclass
class RolePools:
    store_managers: List = field(default_factory=list)
    assistant_managers: List = field(default_factory=list)
    team_leads: List = field(default_factory=list)
    donor_greeters: List = field(default_factory=list)
    donation_pricers: List = field(default_factory=list)
    apparel_processors: List = field(default_factory=list)
    cashiers: List = field(default_factory=list)
    unclassified: List = field(default_factory=list)

    @property
    def higher_tier(self) -> List:
        return self.store_managers + self.assistant_managers

    @property
    def leadership(self) -> List:
        return self.store_managers + self.assistant_managers + self.team_leads

    @property
    def retail(self) -> List:
        return self.donor_greeters + self.donation_pricers + self.apparel_processors + self.cashiers

    @property
    def coverage(self) -> List:
        return self.leadership + self.retail

    def counts(self) -> Dict[str, int]:
        return {
            "store_managers": len(self.store_managers),
            "assistant_managers": len(self.assistant_managers),
            "team_leads": len(self.team_leads),
            "donor_greeters": len(self.donor_greeters),
            "donation_pricers": len(self.donation_pricers),
            "apparel_processors": len(self.apparel_processors),
            "cashiers": len(self.cashiers),
        }


_POOL_FOR_ROLE = {
    "Store Manager": "store_managers",
    "Assistant Manager": "assistant_managers",
    "Team Lead": "team_leads",
    "Donor Greeter": "donor_greeters",
    "Donation Pricer": "donation_pricers",
    "Apparel Processor": "apparel_processors",
    "Cashier": "cashiers",
}


def classify_roster(staff: Iterable) -> RolePools:
    """Partition active staff into coverage pools by their job code.

    Anything exposing ``job_code`` and ``is_active`` works; inactive members
    are dropped and unknown codes land in ``unclassified``.
    """
    pools = RolePools()
    for member in staff:
        if not getattr(member, "is_active", True):
            continue
        role = canonical_role(getattr(member, "job_code", None))
        if role is None:
            pools.unclassified.append(member)
            continue
        getattr(pools, _POOL_FOR_ROLE[role]).append(member)
    return pools

