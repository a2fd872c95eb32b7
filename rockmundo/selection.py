"""Weighted outcome selection and prize-table lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .models import OutcomeDefinition, PrizeTier, WeightAdjustment
from .rng import DeterministicRNG
from .scoring import group_factors


def effective_weights(
    catalog: Sequence[OutcomeDefinition],
    adjustments: Iterable[WeightAdjustment] = (),
) -> List[Tuple[OutcomeDefinition, float]]:
    """Pair every outcome with its base weight times the applicable multipliers."""

    factors = group_factors(adjustments)
    return [
        (outcome, max(0.0, outcome.base_weight) * factors.get(outcome.group, 1.0))
        for outcome in catalog
    ]


class WeightedSelector:
    """Picks exactly one outcome with probability proportional to its effective weight."""

    def __init__(self, catalog: Sequence[OutcomeDefinition]) -> None:
        if not catalog:
            raise ConfigurationError("Cannot select from an empty catalog")
        self._catalog = list(catalog)

    @property
    def catalog(self) -> List[OutcomeDefinition]:
        return list(self._catalog)

    def probabilities(
        self, adjustments: Iterable[WeightAdjustment] = ()
    ) -> List[Tuple[OutcomeDefinition, float]]:
        weighted = effective_weights(self._catalog, adjustments)
        total = sum(weight for _, weight in weighted)
        if total <= 0:
            return [
                (outcome, 1.0 if index == 0 else 0.0)
                for index, (outcome, _) in enumerate(weighted)
            ]
        return [(outcome, weight / total) for outcome, weight in weighted]

    def select(
        self,
        rng: DeterministicRNG,
        adjustments: Iterable[WeightAdjustment] = (),
    ) -> OutcomeDefinition:
        weighted = effective_weights(self._catalog, adjustments)
        total = sum(weight for _, weight in weighted)
        if total <= 0:
            return self._catalog[0]
        remaining = rng.random() * total
        for outcome, weight in weighted:
            if weight <= 0:
                continue
            remaining -= weight
            if remaining <= 0:
                return outcome
        # Floating-point drift left a sliver of mass unassigned.
        return self._catalog[0]


@dataclass(frozen=True)
class PrizeAward:
    matches: int
    bonus_matched: bool
    tier: Optional[PrizeTier]

    @property
    def cash(self) -> int:
        return self.tier.cash if self.tier else 0

    @property
    def xp(self) -> int:
        return self.tier.xp if self.tier else 0

    @property
    def code(self) -> str:
        return self.tier.code if self.tier else "no_prize"


class PrizeTable:
    """Ordered prize tiers scanned from the most demanding down."""

    def __init__(self, tiers: Sequence[PrizeTier]) -> None:
        if not tiers:
            raise ConfigurationError("Prize table must contain at least one tier")
        self._tiers = sorted(tiers, key=lambda tier: (tier.matches, tier.bonus), reverse=True)

    @property
    def tiers(self) -> List[PrizeTier]:
        return list(self._tiers)

    def lookup(self, matches: int, bonus_matched: bool) -> PrizeAward:
        for tier in self._tiers:
            if tier.satisfied_by(matches, bonus_matched):
                return PrizeAward(matches=matches, bonus_matched=bonus_matched, tier=tier)
        return PrizeAward(matches=matches, bonus_matched=bonus_matched, tier=None)


def count_matches(
    ticket_numbers: Iterable[int],
    ticket_bonus: Optional[int],
    winning_numbers: Iterable[int],
    winning_bonus: Optional[int],
) -> Tuple[int, bool]:
    matches = len(set(ticket_numbers) & set(winning_numbers))
    bonus_matched = ticket_bonus is not None and ticket_bonus == winning_bonus
    return matches, bonus_matched


__all__ = [
    "PrizeAward",
    "PrizeTable",
    "WeightedSelector",
    "count_matches",
    "effective_weights",
]
