"""Weekly natural drift of band chemistry axes."""

from __future__ import annotations

from datetime import timedelta
from typing import Dict

from ..effects import PERCENT_SCALE, bounded_delta
from ..models import EffectResult, EventLogEntry, OutcomeDefinition, ResolutionContext
from ..state import to_iso
from .base import DomainResolver

WEEKLY_DRIFT = OutcomeDefinition(code="weekly_drift", group="Drift", base_weight=1.0)

AXES = ("chemistry_level", "conflict_index", "romantic_tension", "creative_alignment")


def weekly_drift(axes: Dict[str, int]) -> Dict[str, int]:
    """Per-axis change for one week: conflict and tension heal, alignment settles at 50."""

    alignment = axes["creative_alignment"]
    if alignment < 50:
        alignment_change = 2
    elif alignment > 50:
        alignment_change = -1
    else:
        alignment_change = 0
    return {
        "conflict_index": -3,
        "romantic_tension": -2,
        "creative_alignment": alignment_change,
        # High conflict slowly erodes chemistry.
        "chemistry_level": -2 if axes["conflict_index"] > 50 else 0,
    }


class ChemistryDriftResolver(DomainResolver):
    name = "chemistry_drift"
    table = "band_chemistry"

    @property
    def interval(self):
        return timedelta(days=self.settings.chemistry_interval_days)

    def owner_of(self, row):
        return row.get("band_id")

    def build_context(self, unit, now):
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={axis: int(unit.data.get(axis) or 0) for axis in AXES},
        )

    def select(self, unit, context, rng):
        return WEEKLY_DRIFT

    def compute_effects(self, unit, context, outcome, baseline, now):
        before = dict(context.signals)
        changes = weekly_drift(before)
        after = {axis: int(PERCENT_SCALE.clamp(before[axis] + changes[axis])) for axis in AXES}

        result = EffectResult(unit_id=unit.id, outcome_code=WEEKLY_DRIFT.code)
        for axis in AXES:
            if after[axis] != before[axis]:
                result.deltas.append(
                    bounded_delta(
                        "band_chemistry", unit.id, axis, changes[axis], PERCENT_SCALE
                    )
                )
        result.unit_updates = {"last_drift_at": to_iso(now)}
        result.summary = {"before": before, "after": after}
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="chemistry_drift",
                outcome_code=WEEKLY_DRIFT.code,
                payload={"before": before, "after": after},
                created_at=now,
                band_id=unit.data.get("band_id"),
            )
        )
        return result


__all__ = ["AXES", "ChemistryDriftResolver", "WEEKLY_DRIFT", "weekly_drift"]
