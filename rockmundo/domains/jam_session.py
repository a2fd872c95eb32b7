"""Wrap-up of finished jam sessions: XP, skill practice and the odd gifted song."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..effects import NON_NEGATIVE, bounded_delta
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
from ..state import from_iso, to_iso
from .base import WeightedDomainResolver

logger = logging.getLogger(__name__)

DEFAULT_SKILL_SLUG = "instruments_basic_acoustic_guitar"

# Skill XP multiplier, in percent, by the participant's current tier.
TIER_PERCENT = {"mastery": 140, "professional": 120, "basic": 100}

SONG_PREFIXES = (
    "Midnight", "Electric", "Groove", "Sunset", "Urban", "Cosmic", "Velvet",
    "Neon", "Crystal", "Thunder", "Golden", "Silver", "Mystic", "Wild",
)
SONG_SUFFIXES = (
    "Jam", "Session", "Vibes", "Flow", "Rhythm", "Beat", "Groove",
    "Moment", "Dream", "Wave", "Pulse", "Echo", "Fire", "Spirit",
)


def skill_tier(current_xp: int) -> str:
    if current_xp >= 650:
        return "mastery"
    if current_xp >= 250:
        return "professional"
    return "basic"


def session_xp(duration: int, diversity: int, mood: int, participants: int) -> Dict[str, int]:
    """Per-player XP: 25 per ten minutes up to two hours, plus bonuses."""

    base = min(12, duration // 10) * 25
    if mood >= 85:
        mood_bonus = base * 25 // 100
    elif mood >= 70:
        mood_bonus = base * 15 // 100
    else:
        mood_bonus = 0
    breakdown = {
        "base": base,
        "synergy": base * diversity // 10,
        "mood": mood_bonus,
        "participants": base * (participants - 1) * 5 // 100,
    }
    breakdown["total"] = sum(breakdown.values())
    return breakdown


def gift_chance(
    participants: int, synergy: int, mood: int, *, base: float, maximum: float
) -> float:
    chance = base + max(0, participants - 2) * 0.0025
    if synergy >= 80:
        chance += 0.005
    if mood >= 80:
        chance += 0.0025
    return min(maximum, chance)


class JamSessionResolver(WeightedDomainResolver):
    """Completes an active jam once its planned end has passed.

    The drawn outcome nudges the session's mood and synergy; every participant,
    the host included, earns the same XP plus instrument practice scaled by
    their skill tier.
    """

    name = "jam_session"
    table = "jam_sessions"
    claimable = (UnitStatus.ACTIVE,)

    def owner_of(self, row: Dict[str, Any]) -> Optional[str]:
        return row.get("host_id")

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        host = self.require_profile(unit.data.get("host_id"))
        rows = self.state.list_jam_participants(unit.id)
        slugs = {row["profile_id"]: row["instrument_skill_slug"] for row in rows}
        participant_ids: List[str] = [row["profile_id"] for row in rows]
        if host["id"] not in slugs:
            participant_ids.append(host["id"])
        for pid in participant_ids:
            self.require_profile(pid)

        skills = {pid: slugs.get(pid) or DEFAULT_SKILL_SLUG for pid in participant_ids}
        skill_xp = {pid: self.state.get_skill_xp(pid, skills[pid]) for pid in participant_ids}
        week_ago = now - timedelta(days=7)
        gifts_this_week = {
            pid: self.state.count_gifted_songs(pid, week_ago) for pid in participant_ids
        }

        started = from_iso(unit.data.get("started_at")) or now
        elapsed = int((now - started).total_seconds() // 60)
        duration = max(10, min(120, elapsed))
        diversity = max(1, len({slug for slug in slugs.values() if slug}))
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={
                "instrument_diversity": diversity,
                "participants": len(participant_ids),
                "duration_minutes": duration,
            },
            related={
                "participant_ids": participant_ids,
                "skills": skills,
                "skill_xp": skill_xp,
                "gifts_this_week": gifts_this_week,
            },
        )

    def baseline(self, unit, context, rng) -> Dict[str, float]:
        # Every roll is drawn whether or not a song is gifted.
        return {
            "gift_roll": rng.random(),
            "recipient_index": rng.randint(0, context.signals["participants"] - 1),
            "title_prefix": rng.randint(0, len(SONG_PREFIXES) - 1),
            "title_suffix": rng.randint(0, len(SONG_SUFFIXES) - 1),
            "song_quality": 40 + rng.randint(0, 30),
            "song_duration": 180 + rng.randint(0, 119),
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
        signals = context.signals
        duration = signals["duration_minutes"]
        diversity = signals["instrument_diversity"]
        count = signals["participants"]
        participant_ids = context.related["participant_ids"]

        synergy = min(100, 50 + diversity * 10 + int(outcome.addition(EffectKind.SYNERGY_DELTA)))
        preset_mood = unit.data.get("mood_score")
        if preset_mood:
            mood = int(preset_mood)
        else:
            mood = min(100, 50 + duration // 3 + int(outcome.addition(EffectKind.MOOD_DELTA)))
        xp = session_xp(duration, diversity, mood, count)
        base_skill_xp = duration // 10 * 5
        chemistry = duration // 15 * 2
        performance = min(100, 50 + synergy // 3 + mood // 5)

        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        recipient, song_id = self._gift_song(unit, context, baseline, synergy, mood, now, result)

        total_xp = 0
        for pid in participant_ids:
            slug = context.related["skills"][pid]
            current = context.related["skill_xp"][pid]
            skill_gained = base_skill_xp * TIER_PERCENT[skill_tier(current)] // 100
            result.inserts.append(
                RowInsert(
                    "jam_session_outcomes",
                    {
                        "session_id": unit.id,
                        "participant_id": pid,
                        "xp_earned": xp["total"],
                        "chemistry_gained": chemistry,
                        "skill_slug": slug,
                        "skill_xp_gained": skill_gained,
                        "gifted_song_id": song_id if pid == recipient else None,
                        "performance_rating": performance,
                        "created_at": to_iso(now),
                    },
                )
            )
            result.inserts.append(
                RowInsert(
                    "skill_progress",
                    {
                        "profile_id": pid,
                        "skill_slug": slug,
                        "current_xp": current + skill_gained,
                        "last_practiced_at": to_iso(now),
                    },
                )
            )
            if xp["total"]:
                result.deltas.append(
                    bounded_delta("profiles", pid, "experience", xp["total"], NON_NEGATIVE)
                )
            result.notifications.append(
                NotificationEntry(
                    profile_id=pid,
                    category="jam",
                    title="Jam session complete",
                    message=(
                        f"{outcome.description or 'Session wrapped'} "
                        f"+{xp['total']} XP, +{skill_gained} {slug.replace('_', ' ')} XP"
                    ),
                    created_at=now,
                )
            )
            total_xp += xp["total"]

        result.unit_updates = {
            "total_xp_awarded": total_xp,
            "mood_score": mood,
            "synergy_score": synergy,
            "gifted_song_id": song_id,
        }
        result.summary = {
            "durationMinutes": duration,
            "participants": count,
            "synergyScore": synergy,
            "moodScore": mood,
            "xpPerPlayer": xp["total"],
            "totalXpAwarded": total_xp,
            "giftedSongId": song_id,
        }
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="jam_session_completed",
                outcome_code=outcome.code,
                payload={
                    "participants": participant_ids,
                    "duration_minutes": duration,
                    "synergy_score": synergy,
                    "mood_score": mood,
                    "xp": xp,
                    "chemistry_gained": chemistry,
                    "performance_rating": performance,
                    "gifted_song_id": song_id,
                },
                created_at=now,
                profile_id=unit.data.get("host_id"),
            )
        )
        return result

    def _gift_song(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        baseline: Dict[str, float],
        synergy: int,
        mood: int,
        now: datetime,
        result: EffectResult,
    ) -> Tuple[Optional[str], Optional[str]]:
        chance = gift_chance(
            context.signals["participants"],
            synergy,
            mood,
            base=self.settings.jam_gift_base_chance,
            maximum=self.settings.jam_gift_max_chance,
        )
        if baseline["gift_roll"] >= chance:
            return None, None
        recipient = context.related["participant_ids"][int(baseline["recipient_index"])]
        if context.related["gifts_this_week"][recipient] >= self.settings.jam_gift_weekly_limit:
            logger.info("Jam %s: %s already received a song this week", unit.id, recipient)
            return None, None

        song_id = f"jam-{unit.id}"
        title = (
            f"{SONG_PREFIXES[int(baseline['title_prefix'])]} "
            f"{SONG_SUFFIXES[int(baseline['title_suffix'])]}"
        )
        result.inserts.append(
            RowInsert(
                "songs",
                {
                    "id": song_id,
                    "title": title,
                    "genre": unit.data.get("genre"),
                    "tempo": unit.data.get("tempo"),
                    "quality_score": int(baseline["song_quality"]),
                    "status": "demo",
                    "duration_seconds": int(baseline["song_duration"]),
                    "created_at": to_iso(now),
                },
            )
        )
        result.inserts.append(
            RowInsert(
                "jam_gifted_song_log",
                {
                    "profile_id": recipient,
                    "session_id": unit.id,
                    "song_id": song_id,
                    "created_at": to_iso(now),
                },
            )
        )
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="jam_song_gifted",
                outcome_code=result.outcome_code,
                payload={"song_id": song_id, "title": title, "chance": round(chance, 4)},
                created_at=now,
                profile_id=recipient,
            )
        )
        result.notifications.append(
            NotificationEntry(
                profile_id=recipient,
                category="jam",
                title="A song came out of the jam",
                message=f"\"{title}\" is now in your song list.",
                created_at=now,
            )
        )
        return recipient, song_id


__all__ = [
    "DEFAULT_SKILL_SLUG",
    "JamSessionResolver",
    "gift_chance",
    "session_xp",
    "skill_tier",
]
