"""Social-post (Twaater) outcome resolution."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

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
from ..rng import DeterministicRNG
from ..state import to_iso
from .base import WeightedDomainResolver

# Twaats linked to one of these count as commercial posts.
COMMERCIAL_LINKS = frozenset({"release", "gig"})

_METRIC_MULTIPLIERS = {
    "likes": EffectKind.LIKES_MULT,
    "replies": EffectKind.REPLIES_MULT,
    "retwaats": EffectKind.RETWAATS_MULT,
    "impressions": EffectKind.IMPRESSIONS_MULT,
}

# Share of the follower-driven engagement each metric receives.
_FOLLOWER_SCALE = {"likes": 1.0, "replies": 0.25, "retwaats": 0.2, "impressions": 10.0}


class TwaaterResolver(WeightedDomainResolver):
    name = "twaater"
    table = "twaats"
    claimable = (UnitStatus.PENDING,)

    def owner_of(self, row):
        return row.get("account_id")

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        account = self.state.get_twaater_account(unit.data["account_id"])
        if account is None:
            raise UnitDataError(f"twaat {unit.id} has no account {unit.data['account_id']!r}")
        profile = self.require_profile(account["profile_id"])
        body = unit.data.get("body") or ""
        linked_type = unit.data.get("linked_type")
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={
                "fame": int(profile["fame"]),
                "linked": linked_type in COMMERCIAL_LINKS,
                "content_length": len(body),
                "followers": int(account["follower_count"]),
            },
            related={"account": account, "profile": profile},
        )

    def baseline(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        rng: DeterministicRNG,
    ) -> Dict[str, float]:
        engagement = context.signals["followers"] * self.settings.twaater_follower_engagement
        values: Dict[str, float] = {}
        for metric, (low, high) in self.settings.twaater_baseline.items():
            values[metric] = rng.randint(low, high) + engagement * _FOLLOWER_SCALE.get(metric, 0.0)
        return values

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        assert outcome is not None
        account = context.related["account"]
        profile = context.related["profile"]
        metrics = layer_effects(baseline, outcome, _METRIC_MULTIPLIERS)
        followers = context.signals["followers"]
        followers_gained = max(
            0, int(round(followers * outcome.addition(EffectKind.FOLLOWER_PCT) / 100.0))
        )
        fame_delta = int(round(outcome.addition(EffectKind.FAME_DELTA)))
        cash_delta = int(round(outcome.addition(EffectKind.CASH_DELTA)))

        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        result.inserts.append(
            RowInsert(
                "twaat_metrics",
                {
                    "twaat_id": unit.id,
                    "likes": metrics.get("likes", 0),
                    "replies": metrics.get("replies", 0),
                    "retwaats": metrics.get("retwaats", 0),
                    "impressions": metrics.get("impressions", 0),
                    "followers_gained": followers_gained,
                    "outcome_code": outcome.code,
                    "updated_at": to_iso(now),
                },
            )
        )
        if followers_gained:
            result.deltas.append(
                bounded_delta("twaater_accounts", account["id"], "follower_count", followers_gained)
            )
        if fame_delta:
            result.deltas.append(
                bounded_delta("profiles", profile["id"], "fame", fame_delta, NON_NEGATIVE)
            )
        if cash_delta:
            result.deltas.append(
                bounded_delta("profiles", profile["id"], "cash", cash_delta, NON_NEGATIVE)
            )

        result.summary = {
            **metrics,
            "followers_gained": followers_gained,
            "fame_delta": fame_delta,
            "cash_delta": cash_delta,
        }
        adjustments = context.related.get("adjustments", [])
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="twaat_outcome",
                outcome_code=outcome.code,
                payload={
                    "group": outcome.group,
                    "description": outcome.description,
                    "metrics": metrics,
                    "followers_gained": followers_gained,
                    "fame_delta": fame_delta,
                    "cash_delta": cash_delta,
                    "adjustments": [adj.rule for adj in adjustments],
                },
                created_at=now,
                profile_id=profile["id"],
            )
        )
        if followers_gained or fame_delta or cash_delta:
            result.notifications.append(
                NotificationEntry(
                    profile_id=profile["id"],
                    category="twaater",
                    title=outcome.description or "Your twaat landed",
                    message=(
                        f"@{account['handle']}: {metrics.get('likes', 0)} likes, "
                        f"+{followers_gained} followers, +{fame_delta} fame"
                    ),
                    created_at=now,
                )
            )
        return result


__all__ = ["COMMERCIAL_LINKS", "TwaaterResolver"]
