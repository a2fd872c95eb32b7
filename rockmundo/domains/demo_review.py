"""Label A&R review of submitted demos."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..errors import UnitDataError
from ..models import (
    EffectResult,
    EventLogEntry,
    NotificationEntry,
    OutcomeDefinition,
    ResolutionContext,
    ResolutionUnit,
    RowInsert,
)
from ..state import to_iso
from .base import WeightedDomainResolver

logger = logging.getLogger(__name__)

CONTRACT_OFFERED = OutcomeDefinition(
    code="contract_offered",
    group="Accept",
    base_weight=1.0,
    description="The label wants to sign you.",
)

TERRITORIES = ("NA", "EU", "UK", "ASIA", "LATAM", "OCEANIA")


@dataclass(frozen=True)
class ArtistMetrics:
    fame: int
    total_fans: int
    release_count: int


@dataclass(frozen=True)
class TierTerms:
    advance_base: int
    advance_max: int
    royalty_base: int
    royalty_max: int
    single_quota: int
    album_quota: int
    term_months: int
    termination_fee_pct: int
    territories: int


TIER_TERMS: Dict[str, TierTerms] = {
    "small": TierTerms(1000, 10000, 12, 20, 4, 1, 36, 60, 1),
    "medium": TierTerms(5000, 30000, 18, 30, 3, 1, 30, 50, 2),
    "large": TierTerms(20000, 100000, 25, 40, 2, 2, 24, 40, 4),
    "major": TierTerms(50000, 500000, 35, 50, 2, 1, 18, 25, 6),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def band_tier(metrics: ArtistMetrics) -> str:
    if metrics.total_fans >= 50000 or metrics.fame >= 80:
        return "major"
    if metrics.total_fans >= 10000 or metrics.fame >= 50:
        return "large"
    if metrics.total_fans >= 1000 or metrics.fame >= 20:
        return "medium"
    return "small"


def acceptance_score(quality: float, metrics: ArtistMetrics, genre_match: bool) -> float:
    """Demo score before noise; compared against the label's threshold."""

    score = quality + metrics.fame * 0.5
    score += math.log10(max(metrics.total_fans, 1)) * 10
    score += metrics.release_count * 5
    if genre_match:
        score += 15
    return score


def contract_terms(
    metrics: ArtistMetrics,
    reputation: float,
    quality: float,
    random_factor: float,
) -> Dict[str, Any]:
    """Offer terms scaled by the artist's tier and standing.

    Fame enters the multipliers on a 0-100 scale. Reputable labels pay smaller
    advances, and strong demos lower the termination fee.
    """

    tier = band_tier(metrics)
    terms = TIER_TERMS[tier]
    fame = min(metrics.fame, 100)
    quality_bonus = min(quality / 500, 0.2)
    fame_multiplier = 1 + (fame / 100) * 0.5
    fan_multiplier = 1 + math.log10(max(metrics.total_fans, 1)) * 0.1
    experience_multiplier = 1 + min(metrics.release_count * 0.05, 0.25)
    label_factor = 1 - reputation / 400

    advance = round_half_up(
        terms.advance_base
        + (terms.advance_max - terms.advance_base)
        * fame_multiplier
        * fan_multiplier
        * (1 + quality_bonus)
        * random_factor
        * label_factor
    )
    royalty = round_half_up(
        terms.royalty_base
        + (terms.royalty_max - terms.royalty_base)
        * (fame_multiplier - 1)
        * experience_multiplier
        * (1 + quality_bonus)
    )
    royalty = min(max(royalty, terms.royalty_base), terms.royalty_max)
    termination_fee = round_half_up(
        terms.termination_fee_pct * (1 - quality_bonus * 0.5) * (2 - fame_multiplier)
    )
    return {
        "tier": tier,
        "advance_amount": advance,
        "royalty_artist_pct": royalty,
        "royalty_label_pct": 100 - royalty,
        "single_quota": terms.single_quota,
        "album_quota": terms.album_quota,
        "release_quota": terms.single_quota + terms.album_quota,
        "term_months": terms.term_months,
        "termination_fee_pct": min(max(termination_fee, 15), 70),
        "manufacturing_covered": True,
        "territories": list(TERRITORIES[: terms.territories]),
        "contract_value": advance + terms.single_quota * 5000 + terms.album_quota * 25000,
    }


class DemoReviewResolver(WeightedDomainResolver):
    """Decides a demo a day after submission.

    Demos scoring at or above the label's threshold get a contract offer with
    computed terms; the rest draw a rejection reason from the catalog.
    """

    name = "demo_review"
    table = "demo_submissions"

    def owner_of(self, row: Dict[str, Any]) -> Optional[str]:
        return row.get("artist_profile_id")

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        song = self.state.get_song(unit.data.get("song_id") or "")
        if song is None:
            raise UnitDataError(f"demo {unit.id}: song {unit.data.get('song_id')!r} not found")
        label = self.state.get_label(unit.data.get("label_id") or "")
        if label is None:
            raise UnitDataError(f"demo {unit.id}: label {unit.data.get('label_id')!r} not found")

        band_id = unit.data.get("band_id")
        artist_id = unit.data.get("artist_profile_id")
        if band_id:
            band = self.state.get_band(band_id)
            if band is None:
                raise UnitDataError(f"demo {unit.id}: band {band_id!r} not found")
            metrics = ArtistMetrics(
                fame=int(band["fame"]),
                total_fans=int(band["total_fans"]),
                release_count=self.state.count_releases(band_id=band_id),
            )
            profile = self.state.get_profile(artist_id) if artist_id else None
        else:
            band = None
            profile = self.require_profile(artist_id)
            metrics = ArtistMetrics(
                fame=int(profile["fame"]),
                total_fans=int(profile["fans"]),
                release_count=self.state.count_releases(profile_id=artist_id),
            )

        genre_focus = self.parse_json(
            label.get("genre_focus"), what=f"genres of label {label['id']}"
        )
        genre = (song.get("genre") or "").lower()
        genre_match = any(genre in str(focus).lower() for focus in genre_focus or [])
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={
                "fame": metrics.fame,
                "total_fans": metrics.total_fans,
                "release_count": metrics.release_count,
                "quality": int(song.get("quality_score") or 0),
                "reputation": int(label.get("reputation_score") or 0),
                "genre_match": genre_match,
            },
            related={
                "song": song,
                "label": label,
                "band": band,
                "profile": profile,
                "metrics": metrics,
                "deal_type": self.state.first_deal_type(label["id"]),
            },
        )

    def select(self, unit, context, rng) -> Optional[OutcomeDefinition]:
        signals = context.signals
        noise = (rng.random() - 0.5) * self.settings.demo_score_noise
        score = acceptance_score(
            signals["quality"], context.related["metrics"], signals["genre_match"]
        ) + noise
        threshold = (
            self.settings.demo_base_threshold
            + signals["reputation"] * self.settings.demo_reputation_weight
        )
        context.related["score"] = round(score, 2)
        context.related["threshold"] = round(threshold, 2)
        if score >= threshold:
            return CONTRACT_OFFERED
        return super().select(unit, context, rng)

    def baseline(self, unit, context, rng) -> Dict[str, float]:
        return {"random_factor": 0.8 + rng.random() * 0.4}

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        assert outcome is not None
        if outcome is CONTRACT_OFFERED:
            return self._offer(unit, context, baseline, now)
        return self._reject(unit, context, outcome, now)

    def _offer(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        label = context.related["label"]
        deal_type = context.related["deal_type"]
        if deal_type is None:
            raise UnitDataError(f"label {label['id']} has no deal types to offer")
        terms = contract_terms(
            context.related["metrics"],
            context.signals["reputation"],
            context.signals["quality"],
            baseline["random_factor"],
        )
        tier = terms.pop("tier")
        contract_id = f"contract-{unit.id}"
        band_id = unit.data.get("band_id")
        artist_id = unit.data.get("artist_profile_id")

        result = EffectResult(unit_id=unit.id, outcome_code=CONTRACT_OFFERED.code)
        result.inserts.append(
            RowInsert(
                "artist_label_contracts",
                {
                    "id": contract_id,
                    "label_id": label["id"],
                    "deal_type_id": deal_type["id"],
                    "band_id": band_id,
                    "artist_profile_id": artist_id,
                    "status": "offered",
                    **terms,
                    "manufacturing_covered": int(terms["manufacturing_covered"]),
                    "territories": json.dumps(terms["territories"]),
                    "demo_submission_id": unit.id,
                    "created_at": to_iso(now),
                },
            )
        )
        result.unit_updates = {"reviewed_at": to_iso(now), "contract_offer_id": contract_id}
        result.summary = {
            "decision": "accepted",
            "score": context.related["score"],
            "threshold": context.related["threshold"],
            "tier": tier,
            "contractId": contract_id,
            "advance": terms["advance_amount"],
            "royaltyArtistPct": terms["royalty_artist_pct"],
        }
        logger.debug("Demo %s accepted by %s as %s tier", unit.id, label["id"], tier)
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="demo_accepted",
                outcome_code=CONTRACT_OFFERED.code,
                payload={
                    "label_id": label["id"],
                    "song_id": unit.data.get("song_id"),
                    "contract_id": contract_id,
                    "tier": tier,
                    "advance_amount": terms["advance_amount"],
                    "royalty_artist_pct": terms["royalty_artist_pct"],
                    "territories": terms["territories"],
                },
                created_at=now,
                profile_id=artist_id,
                band_id=band_id,
            )
        )
        if artist_id:
            result.notifications.append(
                NotificationEntry(
                    profile_id=artist_id,
                    category="label",
                    title=f"Contract offer from {label['name']}",
                    message=(
                        f"{label['name']} loved \"{context.related['song']['title']}\" and "
                        f"offers a ${terms['advance_amount']:,} advance at "
                        f"{terms['royalty_artist_pct']}% royalties."
                    ),
                    created_at=now,
                )
            )
        return result

    def _reject(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: OutcomeDefinition,
        now: datetime,
    ) -> EffectResult:
        label = context.related["label"]
        artist_id = unit.data.get("artist_profile_id")
        reason = outcome.description or "The label passed on this demo."

        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        result.unit_updates = {"reviewed_at": to_iso(now), "rejection_reason": reason}
        result.summary = {
            "decision": "rejected",
            "score": context.related["score"],
            "threshold": context.related["threshold"],
            "reason": reason,
        }
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="demo_rejected",
                outcome_code=outcome.code,
                payload={
                    "label_id": label["id"],
                    "song_id": unit.data.get("song_id"),
                    "reason": reason,
                },
                created_at=now,
                profile_id=artist_id,
                band_id=unit.data.get("band_id"),
            )
        )
        if artist_id:
            result.notifications.append(
                NotificationEntry(
                    profile_id=artist_id,
                    category="label",
                    title=f"{label['name']} passed on your demo",
                    message=reason,
                    created_at=now,
                )
            )
        return result


__all__ = [
    "ArtistMetrics",
    "CONTRACT_OFFERED",
    "DemoReviewResolver",
    "TIER_TERMS",
    "acceptance_score",
    "band_tier",
    "contract_terms",
]
