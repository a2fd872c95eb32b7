"""Completion of accepted PR appearances and film shoots."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from ..effects import NON_NEGATIVE, bounded_delta, layer_effects
from ..errors import UnitDataError
from ..models import (
    EffectKind,
    EffectResult,
    EventLogEntry,
    NotificationEntry,
    OutcomeDefinition,
    ResolutionContext,
    ResolutionUnit,
    RowInsert,
    UnitStatus,
)
from ..state import to_iso
from .base import WeightedDomainResolver

PR_ACTIVITY_TYPES = ("pr_appearance", "film_production")

_BOOST_MULTIPLIERS = {"fame": EffectKind.FAME_MULT, "fans": EffectKind.FANS_MULT}


class PRActivityResolver(WeightedDomainResolver):
    """Pays out a PR activity once its scheduled end has passed.

    The reception outcome scales the offer's fame and fan boosts. Rewards go to
    the band when the offer was made to one, otherwise to the performer.
    """

    name = "pr_activity"
    table = "scheduled_activities"
    claimable = (UnitStatus.SCHEDULED, UnitStatus.IN_PROGRESS)
    eligibility_clause = "activity_type IN ('pr_appearance', 'film_production')"

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        what = f"metadata on activity {unit.id}"
        metadata = self.parse_json(unit.data.get("metadata"), what=what) or {}
        if not isinstance(metadata, dict):
            raise UnitDataError(f"{what} must be an object")
        band_id = unit.data.get("band_id") or metadata.get("band_id")
        band = self.state.get_band(band_id) if band_id else None
        profile = self.require_profile(unit.data.get("profile_id"))
        fame = band["fame"] if band else profile["fame"]
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={
                "fame": int(fame),
                "media_type": metadata.get("media_type"),
                "has_band": band is not None,
            },
            related={"metadata": metadata, "band": band, "profile": profile},
        )

    def baseline(self, unit, context, rng) -> Dict[str, float]:
        metadata = context.related["metadata"]
        return {
            "fame": float(metadata.get("fame_boost") or 0),
            "fans": float(metadata.get("fan_boost") or 0),
        }

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        assert outcome is not None
        metadata = context.related["metadata"]
        band = context.related["band"]
        profile = context.related["profile"]
        boosts = layer_effects(baseline, outcome, _BOOST_MULTIPLIERS)
        fame_gained = max(0, boosts["fame"] + int(round(outcome.addition(EffectKind.FAME_DELTA))))
        fans_gained = max(0, boosts["fans"] + int(round(outcome.addition(EffectKind.FANS_DELTA))))
        compensation = int(metadata.get("compensation") or 0)
        cash = max(0, compensation + int(round(outcome.addition(EffectKind.CASH_DELTA))))

        media_type = metadata.get("media_type") or "media"
        outlet = (
            metadata.get("outlet_name")
            or metadata.get("show_name")
            or f"{media_type.upper()} Outlet"
        )

        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        if band is not None:
            self._band_rewards(
                result, band, metadata, outcome, fame_gained, fans_gained, cash, outlet, now
            )
        else:
            if fame_gained:
                result.deltas.append(
                    bounded_delta("profiles", profile["id"], "fame", fame_gained, NON_NEGATIVE)
                )
            if cash:
                result.deltas.append(
                    bounded_delta("profiles", profile["id"], "cash", cash, NON_NEGATIVE)
                )

        result.inserts.append(
            RowInsert(
                "media_appearances",
                {
                    "band_id": band["id"] if band else None,
                    "media_type": media_type,
                    "program_name": outlet,
                    "network": metadata.get("show_name") or outlet,
                    "air_date": unit.data.get("scheduled_start"),
                    "audience_reach": fans_gained * 100,
                    "sentiment": "negative" if outcome.group == "Setback" else "positive",
                    "highlight": outcome.description or f"{media_type} appearance",
                    "created_at": to_iso(now),
                },
            )
        )
        result.summary = {
            "fameGained": fame_gained,
            "fansGained": fans_gained,
            "cash": cash,
            "outlet": outlet,
        }
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="pr_activity_completed",
                outcome_code=outcome.code,
                payload={
                    "offer_id": metadata.get("offer_id"),
                    "media_type": media_type,
                    "outlet_name": outlet,
                    "fame_gained": fame_gained,
                    "fans_gained": fans_gained,
                    "compensation": cash,
                    "reception": outcome.group,
                },
                created_at=now,
                profile_id=profile["id"],
                band_id=band["id"] if band else None,
            )
        )
        result.notifications.append(
            NotificationEntry(
                profile_id=profile["id"],
                category="pr",
                title=unit.data.get("title") or "PR appearance complete",
                message=(
                    f"{outcome.description or 'Appearance wrapped'} "
                    f"+{fame_gained} fame, +{fans_gained} fans, ${cash:,}"
                ),
                created_at=now,
            )
        )
        return result

    @staticmethod
    def _band_rewards(
        result: EffectResult,
        band: Dict[str, Any],
        metadata: Dict[str, Any],
        outcome: OutcomeDefinition,
        fame_gained: int,
        fans_gained: int,
        cash: int,
        outlet: str,
        now: datetime,
    ) -> None:
        media_type = metadata.get("media_type") or "media"
        if fame_gained:
            result.deltas.append(
                bounded_delta("bands", band["id"], "fame", fame_gained, NON_NEGATIVE)
            )
        if fans_gained:
            result.deltas.append(
                bounded_delta("bands", band["id"], "total_fans", fans_gained, NON_NEGATIVE)
            )
        if cash:
            result.deltas.append(
                bounded_delta("bands", band["id"], "band_balance", cash, NON_NEGATIVE)
            )
        result.inserts.append(
            RowInsert(
                "band_fame_events",
                {
                    "band_id": band["id"],
                    "event_type": "pr_appearance",
                    "fame_gained": fame_gained,
                    "event_data": json.dumps(
                        {
                            "media_type": media_type,
                            "offer_id": metadata.get("offer_id"),
                            "compensation": cash,
                            "fan_boost": fans_gained,
                            "outlet_name": outlet,
                            "reception": outcome.code,
                        }
                    ),
                    "created_at": to_iso(now),
                },
            )
        )
        if cash:
            result.inserts.append(
                RowInsert(
                    "band_earnings",
                    {
                        "band_id": band["id"],
                        "amount": cash,
                        "source": "pr_appearance",
                        "description": f"{media_type.upper()} appearance on {outlet}",
                        "metadata": json.dumps(
                            {"offer_id": metadata.get("offer_id"), "media_type": media_type}
                        ),
                        "created_at": to_iso(now),
                    },
                )
            )


__all__ = ["PRActivityResolver", "PR_ACTIVITY_TYPES"]
