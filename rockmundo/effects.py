"""Translate selected outcomes into bounded field deltas and commit them."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .errors import ClaimLostError, PartialApplicationFailure
from .models import (
    EffectKind,
    EffectResult,
    FieldDelta,
    OutcomeDefinition,
    ResolutionUnit,
)

logger = logging.getLogger(__name__)


def clamp(value: float, lower: Optional[float], upper: Optional[float]) -> float:
    if lower is not None and value < lower:
        return lower
    if upper is not None and value > upper:
        return upper
    return value


@dataclass(frozen=True)
class FieldBounds:
    lower: Optional[float] = None
    upper: Optional[float] = None

    def clamp(self, value: float) -> float:
        return clamp(value, self.lower, self.upper)


NON_NEGATIVE = FieldBounds(lower=0)
PERCENT_SCALE = FieldBounds(lower=0, upper=100)
AFFECTION_SCALE = FieldBounds(lower=-100, upper=100)


def bounded_delta(
    table: str,
    key: Any,
    column: str,
    amount: float,
    bounds: FieldBounds = NON_NEGATIVE,
    *,
    key_column: str = "id",
) -> FieldDelta:
    """Additive change clamped by the store when it is applied."""

    return FieldDelta(
        table=table,
        key=key,
        column=column,
        amount=amount,
        lower=bounds.lower,
        upper=bounds.upper,
        key_column=key_column,
    )


def bounded_set(
    table: str,
    key: Any,
    column: str,
    value: float,
    bounds: FieldBounds = PERCENT_SCALE,
    *,
    key_column: str = "id",
) -> FieldDelta:
    return FieldDelta(
        table=table,
        key=key,
        column=column,
        set_value=bounds.clamp(value),
        lower=bounds.lower,
        upper=bounds.upper,
        key_column=key_column,
    )


def layer_effects(
    baseline: Mapping[str, float],
    outcome: OutcomeDefinition,
    multipliers: Mapping[str, EffectKind],
) -> Dict[str, int]:
    """Scale the random baseline by the outcome's multiplicative effects.

    Metrics without a matching multiplier pass through unchanged. Additive
    effects are stacked by the caller once the multiplied values are known.
    """

    layered: Dict[str, int] = {}
    for metric, base in baseline.items():
        kind = multipliers.get(metric)
        factor = outcome.multiplier(kind) if kind is not None else 1.0
        layered[metric] = max(0, int(round(base * factor)))
    return layered


class EffectApplicator:
    """Commits an :class:`EffectResult` for one claimed unit in a single transaction."""

    def __init__(self, state) -> None:
        self._state = state

    def apply(
        self,
        unit: ResolutionUnit,
        result: EffectResult,
        *,
        table: str,
        claim_token: str,
        now: datetime,
        next_eligible_at: Optional[datetime] = None,
    ) -> EffectResult:
        try:
            self._state.commit_resolution(
                table,
                unit.id,
                claim_token=claim_token,
                result=result,
                now=now,
                next_eligible_at=next_eligible_at,
            )
        except ClaimLostError:
            raise
        except sqlite3.Error as exc:
            logger.error(
                "Effect write failed for %s/%s, transaction rolled back: %s",
                unit.domain,
                unit.id,
                exc,
            )
            raise PartialApplicationFailure(
                f"Effects for {unit.domain}/{unit.id} were not applied: {exc}"
            ) from exc
        return result


__all__ = [
    "AFFECTION_SCALE",
    "EffectApplicator",
    "FieldBounds",
    "NON_NEGATIVE",
    "PERCENT_SCALE",
    "bounded_delta",
    "bounded_set",
    "clamp",
    "layer_effects",
]
