"""
Static per-tier policy: monthly allowance, scheduling priority and output
duration bounds. Allowance 0 disables video generation for the tier.
"""
from dataclasses import dataclass
from enum import StrEnum, auto
from typing import Mapping, Optional


class Tier(StrEnum):
    FREE = auto()
    PRO = auto()
    PREMIUM = auto()
    VIP = auto()


@dataclass(frozen=True)
class TierPolicy:
    monthly_allowance: int
    priority: int
    default_duration_seconds: int
    max_duration_seconds: int

    def resolve_duration(self, requested: Optional[float]) -> int:
        duration = requested if requested is not None else self.default_duration_seconds
        return max(1, min(int(round(duration)), self.max_duration_seconds))


DEFAULT_TIER_POLICIES: dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(monthly_allowance=0, priority=0, default_duration_seconds=6, max_duration_seconds=6),
    Tier.PRO: TierPolicy(monthly_allowance=0, priority=25, default_duration_seconds=6, max_duration_seconds=6),
    Tier.PREMIUM: TierPolicy(monthly_allowance=20, priority=50, default_duration_seconds=6, max_duration_seconds=30),
    Tier.VIP: TierPolicy(monthly_allowance=25, priority=100, default_duration_seconds=45, max_duration_seconds=120),
}

DEFAULT_ALLOWED_TIERS = frozenset({Tier.PREMIUM, Tier.VIP})


class TierTable:
    def __init__(
        self,
        policies: Optional[Mapping[Tier, TierPolicy]] = None,
        allowed: Optional[frozenset[Tier]] = None,
    ):
        self.policies = dict(policies or DEFAULT_TIER_POLICIES)
        self.allowed = frozenset(allowed if allowed is not None else DEFAULT_ALLOWED_TIERS)

    def policy(self, tier: str) -> TierPolicy:
        return self.policies[Tier(tier)]

    def is_allowed(self, tier: str) -> bool:
        return Tier(tier) in self.allowed

    def minimum_allowed(self) -> Optional[Tier]:
        """Lowest-priority tier that may use the feature."""
        if not self.allowed:
            return None
        return min(self.allowed, key=lambda t: self.policies[t].priority)
