"""Contextual weight adjustments driven by declarative rules."""

from __future__ import annotations

from typing import Dict, Iterable, List

from .models import ResolutionContext, WeightAdjustment, WeightRule


class ContextScorer:
    """Turns a resolution context into per-group weight multipliers.

    Rules are data: each names a context signal, a comparison and the group
    whose weight it multiplies. A signal missing from the context never fires.
    """

    def __init__(self, rules: Iterable[WeightRule]) -> None:
        self._rules = list(rules)

    @property
    def rules(self) -> List[WeightRule]:
        return list(self._rules)

    def score(self, context: ResolutionContext) -> List[WeightAdjustment]:
        return [
            WeightAdjustment(group=rule.group, factor=rule.factor, rule=rule.label)
            for rule in self._rules
            if rule.matches(context.signals)
        ]


def group_factors(adjustments: Iterable[WeightAdjustment]) -> Dict[str, float]:
    """Collapse adjustments into one product per group."""

    factors: Dict[str, float] = {}
    for adjustment in adjustments:
        factors[adjustment.group] = factors.get(adjustment.group, 1.0) * adjustment.factor
    return factors


__all__ = ["ContextScorer", "group_factors"]
