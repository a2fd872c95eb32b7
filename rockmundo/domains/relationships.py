"""Daily affection decay for idle relationships."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from ..effects import AFFECTION_SCALE, bounded_set
from ..models import (
    EffectKind,
    EffectResult,
    EventLogEntry,
    NotificationEntry,
    OutcomeDefinition,
    ResolutionContext,
    ResolutionUnit,
)
from ..state import from_iso, to_iso
from .base import WeightedDomainResolver

logger = logging.getLogger(__name__)

WITHIN_GRACE = "within_grace"
NEUTRAL = "neutral"


def standing(affection: float, thresholds: Mapping[str, int]) -> str:
    """Name of the threshold band an affection value falls in."""

    for label, value in sorted(thresholds.items(), key=lambda item: item[1], reverse=True):
        if value >= 0 and affection >= value:
            return label
    for label, value in sorted(thresholds.items(), key=lambda item: item[1]):
        if value < 0 and affection <= value:
            return label
    return NEUTRAL


def decay_toward_zero(affection: float, amount: float) -> float:
    if affection > 0:
        return max(0.0, affection - amount)
    if affection < 0:
        return min(0.0, affection + amount)
    return 0.0


class RelationshipDecayResolver(WeightedDomainResolver):
    """Pulls affection toward neutral once a pair has stopped interacting.

    Runs every ``relationships.interval_hours``. Nothing decays during the
    grace period; after it the decay grows by ``daily_decay`` per idle day up
    to ``max_decay`` per run.
    """

    name = "relationship_decay"
    table = "relationships"

    @property
    def interval(self) -> Optional[timedelta]:
        return timedelta(hours=self.settings.relationship_interval_hours)

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        profile = self.require_profile(unit.data.get("profile_id"))
        other = self.state.get_profile(unit.data.get("other_profile_id") or "")
        last_interaction = from_iso(unit.data.get("last_interaction_at")) or now
        inactive_days = max(0.0, (now - last_interaction).total_seconds() / 86400)
        same_city = bool(
            other is not None
            and profile.get("current_city")
            and profile.get("current_city") == other.get("current_city")
        )
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={
                "affection": float(unit.data.get("affection") or 0),
                "inactive_days": inactive_days,
                "same_city": same_city,
            },
            related={"profile": profile, "other": other},
        )

    def _idle_days(self, context: ResolutionContext) -> float:
        return context.signals["inactive_days"] - self.settings.relationship_grace_days

    def select(self, unit, context, rng) -> Optional[OutcomeDefinition]:
        if self._idle_days(context) <= 0:
            return None
        return super().select(unit, context, rng)

    def baseline(self, unit, context, rng) -> Dict[str, float]:
        idle_days = max(0.0, self._idle_days(context))
        decay = min(
            self.settings.relationship_max_decay,
            self.settings.relationship_daily_decay * idle_days,
        )
        return {"decay": decay}

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        if outcome is None:
            inactive_days = round(context.signals["inactive_days"], 2)
            result = EffectResult(unit_id=unit.id, outcome_code=WITHIN_GRACE)
            result.unit_updates = {"last_decay_at": to_iso(now)}
            result.summary = {"inactiveDays": inactive_days}
            result.events.append(
                EventLogEntry(
                    domain=self.name,
                    unit_id=unit.id,
                    event_type="relationship_decay_skipped",
                    outcome_code=WITHIN_GRACE,
                    payload={
                        "other_profile_id": unit.data.get("other_profile_id"),
                        "affection": context.signals["affection"],
                        "inactive_days": inactive_days,
                        "grace_days": self.settings.relationship_grace_days,
                    },
                    created_at=now,
                    profile_id=context.related["profile"]["id"],
                )
            )
            return result

        before = context.signals["affection"]
        decay = baseline["decay"] * outcome.multiplier(EffectKind.DECAY_MULT)
        after = decay_toward_zero(before, decay) + outcome.addition(EffectKind.AFFECTION_DELTA)
        after = round(AFFECTION_SCALE.clamp(after), 2)

        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        result.deltas.append(
            bounded_set("relationships", unit.id, "affection", after, AFFECTION_SCALE)
        )
        result.unit_updates = {"last_decay_at": to_iso(now)}
        result.summary = {
            "affectionBefore": before,
            "affectionAfter": after,
            "decay": round(decay, 2),
        }
        profile = context.related["profile"]
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="relationship_decayed",
                outcome_code=outcome.code,
                payload={
                    "other_profile_id": unit.data.get("other_profile_id"),
                    "affection_before": before,
                    "affection_after": after,
                    "inactive_days": round(context.signals["inactive_days"], 2),
                },
                created_at=now,
                profile_id=profile["id"],
            )
        )

        thresholds = self.settings.relationship_thresholds
        old_standing, new_standing = standing(before, thresholds), standing(after, thresholds)
        if old_standing != new_standing:
            logger.debug("Relationship %s moved from %s to %s", unit.id, old_standing, new_standing)
            result.events.append(
                EventLogEntry(
                    domain=self.name,
                    unit_id=unit.id,
                    event_type="relationship_threshold",
                    outcome_code=outcome.code,
                    payload={"from": old_standing, "to": new_standing, "affection": after},
                    created_at=now,
                    profile_id=profile["id"],
                )
            )
            other = context.related["other"]
            name = other["display_name"] if other else "an old acquaintance"
            result.notifications.append(
                NotificationEntry(
                    profile_id=profile["id"],
                    category="relationships",
                    title="Relationship changed",
                    message=f"You and {name} are now {new_standing.replace('_', ' ')}.",
                    created_at=now,
                )
            )
        return result


__all__ = [
    "NEUTRAL",
    "RelationshipDecayResolver",
    "WITHIN_GRACE",
    "decay_toward_zero",
    "standing",
]
