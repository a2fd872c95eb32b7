"""Lottery draws and the tickets checked against them."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import Settings
from ..effects import NON_NEGATIVE, bounded_delta
from ..errors import InvalidTicket, UnitDataError
from ..models import (
    EffectKind,
    EffectResult,
    EventLogEntry,
    NotificationEntry,
    OutcomeDefinition,
    ResolutionContext,
    ResolutionUnit,
    UnitStatus,
)
from ..rng import DeterministicRNG
from ..selection import PrizeTable, count_matches
from .base import DomainResolver

logger = logging.getLogger(__name__)

DRAWN = OutcomeDefinition(code="drawn", group="Draw", base_weight=1.0)


def validate_ticket(
    numbers: Iterable[int],
    bonus_number: Optional[int],
    settings: Settings,
) -> Tuple[List[int], int]:
    """Check a ticket against the configured game and return it normalised."""

    try:
        picked = [int(number) for number in numbers]
    except (TypeError, ValueError) as exc:
        raise InvalidTicket(f"Ticket numbers must be integers: {exc}") from exc
    if len(picked) != settings.lottery_number_count:
        raise InvalidTicket(
            f"A ticket needs exactly {settings.lottery_number_count} numbers, got {len(picked)}"
        )
    if len(set(picked)) != len(picked):
        raise InvalidTicket("Ticket numbers must be distinct")
    out_of_range = [n for n in picked if not 1 <= n <= settings.lottery_number_max]
    if out_of_range:
        raise InvalidTicket(
            f"Numbers {out_of_range} are outside 1..{settings.lottery_number_max}"
        )
    if bonus_number is None:
        raise InvalidTicket("A bonus number is required")
    try:
        bonus = int(bonus_number)
    except (TypeError, ValueError) as exc:
        raise InvalidTicket(f"Bonus number must be an integer: {exc}") from exc
    if not 1 <= bonus <= settings.lottery_bonus_max:
        raise InvalidTicket(f"Bonus number must be within 1..{settings.lottery_bonus_max}")
    return sorted(picked), bonus


def quick_pick(rng: DeterministicRNG, settings: Settings) -> Tuple[List[int], int]:
    pool = range(1, settings.lottery_number_max + 1)
    numbers = sorted(rng.sample(pool, settings.lottery_number_count))
    return numbers, rng.randint(1, settings.lottery_bonus_max)


class LotteryDrawResolver(DomainResolver):
    """Draws the winning numbers once the draw time has passed."""

    name = "lottery_draw"
    table = "lottery_draws"
    claimable = (UnitStatus.SCHEDULED,)

    def owner_of(self, row):
        return None

    def select(self, unit, context, rng):
        return DRAWN

    def baseline(self, unit, context, rng):
        numbers, bonus = quick_pick(rng, self.settings)
        context.related["winning_numbers"] = numbers
        context.related["bonus_number"] = bonus
        return {}

    def compute_effects(self, unit, context, outcome, baseline, now):
        numbers = context.related["winning_numbers"]
        bonus = context.related["bonus_number"]
        result = EffectResult(unit_id=unit.id, outcome_code=DRAWN.code)
        result.unit_updates = {"winning_numbers": json.dumps(numbers), "bonus_number": bonus}
        result.summary = {"winningNumbers": numbers, "bonusNumber": bonus}
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="lottery_drawn",
                outcome_code=DRAWN.code,
                payload={"winning_numbers": numbers, "bonus_number": bonus},
                created_at=now,
            )
        )
        logger.info("Lottery draw %s: %s bonus %s", unit.id, numbers, bonus)
        return result


class LotteryTicketResolver(DomainResolver):
    """Checks a ticket against its completed draw and pays the matching tier.

    The outcome is deterministic: the prize table is scanned from the most
    demanding tier down and the first satisfied tier wins.
    """

    name = "lottery_ticket"
    table = "lottery_tickets"
    claimable = (UnitStatus.PENDING,)
    eligibility_clause = "draw_id IN (SELECT id FROM lottery_draws WHERE status = 'completed')"

    def prepare(self) -> None:
        self.prize_table = PrizeTable(self.catalogs.prize_tiers(self.name))

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        draw = self.state.get_unit("lottery_draws", unit.data["draw_id"])
        if draw is None or not draw.get("winning_numbers"):
            raise UnitDataError(f"ticket {unit.id} references an undrawn draw")
        numbers = self.parse_json(unit.data["numbers"], what=f"numbers on ticket {unit.id}")
        winning = self.parse_json(draw["winning_numbers"], what=f"winning numbers on draw {draw['id']}")
        matches, bonus_matched = count_matches(
            numbers, unit.data.get("bonus_number"), winning, draw.get("bonus_number")
        )
        return ResolutionContext(
            domain=self.name,
            unit_id=unit.id,
            signals={"matches": matches, "bonus_matched": bonus_matched},
            related={"draw": draw, "numbers": numbers, "winning_numbers": winning},
        )

    def select(self, unit, context, rng) -> Optional[OutcomeDefinition]:
        award = self.prize_table.lookup(
            context.signals["matches"], context.signals["bonus_matched"]
        )
        context.related["award"] = award
        return OutcomeDefinition(
            code=award.code,
            group="Prize" if award.tier else "NoPrize",
            base_weight=1.0,
            effects={EffectKind.CASH_DELTA: award.cash, EffectKind.XP_DELTA: award.xp},
        )

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        assert outcome is not None
        award = context.related["award"]
        profile_id = unit.data["profile_id"]
        self.require_profile(profile_id)
        result = EffectResult(unit_id=unit.id, outcome_code=outcome.code)
        if award.cash:
            result.deltas.append(bounded_delta("profiles", profile_id, "cash", award.cash, NON_NEGATIVE))
        if award.xp:
            result.deltas.append(
                bounded_delta("profiles", profile_id, "experience", award.xp, NON_NEGATIVE)
            )
        result.unit_updates = {
            "matches": award.matches,
            "bonus_matched": int(award.bonus_matched),
            "prize_cash": award.cash,
            "prize_xp": award.xp,
        }
        result.summary = {
            "matches": award.matches,
            "bonusMatched": award.bonus_matched,
            "prizeCash": award.cash,
            "prizeXp": award.xp,
        }
        result.events.append(
            EventLogEntry(
                domain=self.name,
                unit_id=unit.id,
                event_type="lottery_ticket_checked",
                outcome_code=outcome.code,
                payload={
                    "draw_id": unit.data["draw_id"],
                    "numbers": context.related["numbers"],
                    "winning_numbers": context.related["winning_numbers"],
                    "matches": award.matches,
                    "bonus_matched": award.bonus_matched,
                    "prize_cash": award.cash,
                    "prize_xp": award.xp,
                },
                created_at=now,
                profile_id=profile_id,
            )
        )
        if award.tier is not None:
            bonus_text = " plus the bonus" if award.bonus_matched else ""
            result.notifications.append(
                NotificationEntry(
                    profile_id=profile_id,
                    category="lottery",
                    title="Lottery win!",
                    message=(
                        f"You matched {award.matches} numbers{bonus_text} and won "
                        f"${award.cash:,} and {award.xp} XP."
                    ),
                    created_at=now,
                )
            )
        return result


__all__ = [
    "DRAWN",
    "LotteryDrawResolver",
    "LotteryTicketResolver",
    "quick_pick",
    "validate_ticket",
]
