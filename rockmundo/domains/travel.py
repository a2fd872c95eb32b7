"""Travel completion: move the traveller to the destination city on arrival."""

from __future__ import annotations

from ..models import (
    EffectResult,
    EventLogEntry,
    FieldDelta,
    NotificationEntry,
    OutcomeDefinition,
    ResolutionContext,
    UnitStatus,
)
from ..state import to_iso
from .base import DomainResolver

ARRIVED = OutcomeDefinition(code="arrived", group="Arrival", base_weight=1.0)


class TravelResolver(DomainResolver):
    name = "travel"
    table = "travels"
    claimable = (UnitStatus.SCHEDULED, UnitStatus.IN_PROGRESS)

    def build_context(self, unit, now):
        profile = self.require_profile(unit.data.get("profile_id"))
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={"current_city": profile.get("current_city")},
            related={"profile": profile},
        )

    def select(self, unit, context, rng):
        return ARRIVED

    def compute_effects(self, unit, context, outcome, baseline, now):
        profile = context.related["profile"]
        destination = unit.data["to_city"]
        result = EffectResult(unit_id=unit.id, outcome_code=ARRIVED.code)
        result.deltas.append(
            FieldDelta(table="profiles", key=profile["id"], column="current_city", set_value=destination)
        )
        result.unit_updates = {"arrived_at": to_iso(now)}
        result.summary = {"fromCity": unit.data.get("from_city"), "toCity": destination}
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="travel_completed",
                outcome_code=ARRIVED.code,
                payload={
                    "from_city": unit.data.get("from_city"),
                    "to_city": destination,
                    "departure_time": unit.data.get("departure_time"),
                },
                created_at=now,
                profile_id=profile["id"],
            )
        )
        result.notifications.append(
            NotificationEntry(
                profile_id=profile["id"],
                category="travel",
                title="Journey complete",
                message=f"Arrived in {destination}",
                created_at=now,
            )
        )
        return result


__all__ = ["ARRIVED", "TravelResolver"]
