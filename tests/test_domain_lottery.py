"""Tests for lottery draws, ticket checks and purchases."""
from __future__ import annotations

import json
from datetime import timedelta

import pytest

from rockmundo.domains.lottery import quick_pick, validate_ticket
from rockmundo.errors import DrawClosed, InsufficientFunds, InvalidTicket
from rockmundo.rng import DeterministicRNG


def _expected_draw(settings, draw_id, draw_at):
    rng = DeterministicRNG.for_unit(settings.engine_seed, "lottery_draw", draw_id, draw_at)
    return quick_pick(rng, settings)


def test_validate_ticket_normalises(settings):
    """Valid tickets come back sorted with an int bonus."""
    numbers, bonus = validate_ticket([49, 1, 7, 12, 30, 22, 3], "4", settings)

    assert numbers == [1, 3, 7, 12, 22, 30, 49]
    assert bonus == 4


@pytest.mark.parametrize(
    "numbers,bonus",
    [
        ([1, 2, 3, 4, 5, 6], 1),
        ([1, 2, 3, 4, 5, 6, 6], 1),
        ([0, 2, 3, 4, 5, 6, 7], 1),
        ([1, 2, 3, 4, 5, 6, 50], 1),
        ([1, 2, 3, 4, 5, 6, "x"], 1),
        ([1, 2, 3, 4, 5, 6, 7], None),
        ([1, 2, 3, 4, 5, 6, 7], 11),
        ([1, 2, 3, 4, 5, 6, 7], "bonus"),
    ],
)
def test_validate_ticket_rejects(settings, numbers, bonus):
    """Wrong count, duplicates, out-of-range and missing bonus are invalid."""
    with pytest.raises(InvalidTicket):
        validate_ticket(numbers, bonus, settings)


def test_quick_pick_is_valid(settings):
    """Quick picks always pass validation."""
    rng = DeterministicRNG(3)
    for _ in range(50):
        numbers, bonus = quick_pick(rng, settings)
        assert validate_ticket(numbers, bonus, settings) == (numbers, bonus)


def test_draw_then_tickets(service, state, settings, now):
    """Tickets wait for their draw, then pay the first satisfied tier."""
    draw_at = now - timedelta(hours=1)
    state.upsert_profile("p-1", "Ada", cash=100)
    state.add_lottery_draw("draw-1", draw_at=draw_at)
    winning, winning_bonus = _expected_draw(settings, "draw-1", draw_at)

    losers = [n for n in range(1, 50) if n not in winning]
    six_plus_bonus = winning[:6] + [losers[0]]
    nothing = losers[1:8]
    wrong_bonus = winning_bonus % settings.lottery_bonus_max + 1
    bought_at = now - timedelta(hours=2)
    winner = service.buy_ticket("p-1", "draw-1", six_plus_bonus, winning_bonus, now=bought_at)
    loser = service.buy_ticket("p-1", "draw-1", nothing, wrong_bonus, now=bought_at)
    assert state.get_profile("p-1")["cash"] == 80

    early = service.resolve("lottery_ticket", now=now)
    assert early.processed == 0
    explicit = service.resolve("lottery_ticket", unit_id=winner["ticketId"], now=now)
    assert explicit.results[0].reason == "NotYetEligible"

    drawn = service.resolve("lottery_draw", now=now)
    assert drawn.results[0].outcome_code == "drawn"
    draw_row = state.get_unit("lottery_draws", "draw-1")
    assert json.loads(draw_row["winning_numbers"]) == winning
    assert draw_row["bonus_number"] == winning_bonus

    checked = service.resolve("lottery_ticket", now=now)
    by_id = {result.unit_id: result for result in checked.results}
    assert by_id[winner["ticketId"]].outcome_code == "match_6_bonus"
    assert by_id[winner["ticketId"]].summary == {
        "matches": 6,
        "bonusMatched": True,
        "prizeCash": 50000,
        "prizeXp": 2000,
    }
    assert by_id[loser["ticketId"]].outcome_code == "no_prize"

    profile = state.get_profile("p-1")
    assert profile["cash"] == 80 + 50000
    assert profile["experience"] == 2000
    ticket = state.get_unit("lottery_tickets", winner["ticketId"])
    assert (ticket["matches"], ticket["bonus_matched"], ticket["prize_cash"]) == (6, 1, 50000)

    notifications = state.list_notifications("p-1")
    assert [n["title"] for n in notifications] == ["Lottery win!"]
    checks = [e for e in state.list_events(domain="lottery_ticket")]
    assert len(checks) == 2


def test_draw_happens_once(service, state, now):
    """Re-running the draw does not redraw the numbers."""
    state.add_lottery_draw("draw-1", draw_at=now - timedelta(hours=1))
    service.resolve("lottery_draw", now=now)
    first = state.get_unit("lottery_draws", "draw-1")["winning_numbers"]

    again = service.resolve("lottery_draw", unit_id="draw-1", now=now + timedelta(hours=1))

    assert again.results[0].reason == "AlreadyCompleted"
    assert state.get_unit("lottery_draws", "draw-1")["winning_numbers"] == first


def test_buy_ticket_quick_pick(service, state, settings, now):
    """Omitted numbers are quick-picked and the price is debited."""
    state.upsert_profile("p-1", "Ada", cash=25)
    state.add_lottery_draw("draw-1", draw_at=now + timedelta(days=1))

    ticket = service.buy_ticket("p-1", "draw-1", now=now)

    assert len(ticket["numbers"]) == settings.lottery_number_count
    assert 1 <= ticket["bonusNumber"] <= settings.lottery_bonus_max
    assert ticket["price"] == settings.lottery_ticket_price
    assert state.get_profile("p-1")["cash"] == 25 - settings.lottery_ticket_price


def test_buy_ticket_errors(service, state, now):
    """Purchase preconditions map onto distinct errors."""
    state.upsert_profile("rich", "Rich", cash=1000)
    state.upsert_profile("broke", "Broke", cash=5)
    state.add_lottery_draw("open", draw_at=now + timedelta(days=1))
    state.add_lottery_draw("past", draw_at=now - timedelta(days=1))
    numbers = [1, 2, 3, 4, 5, 6, 7]

    with pytest.raises(DrawClosed):
        service.buy_ticket("rich", "missing", numbers, 1, now=now)
    with pytest.raises(DrawClosed):
        service.buy_ticket("rich", "past", numbers, 1, now=now)
    with pytest.raises(InvalidTicket):
        service.buy_ticket("nobody", "open", numbers, 1, now=now)
    with pytest.raises(InvalidTicket):
        service.buy_ticket("rich", "open", [1, 2, 3], 1, now=now)
    with pytest.raises(InsufficientFunds):
        service.buy_ticket("broke", "open", numbers, 1, now=now)

    assert state.get_profile("broke")["cash"] == 5
    assert state.get_profile("rich")["cash"] == 1000


def test_ticket_for_unknown_profile_fails_at_payout(service, state, now):
    """A ticket whose owner vanished is marked failed without touching the draw."""
    state.upsert_profile("p-1", "Ada", cash=100)
    state.add_lottery_draw("draw-1", draw_at=now - timedelta(hours=1))
    ticket = service.buy_ticket("p-1", "draw-1", [1, 2, 3, 4, 5, 6, 7], 1, now=now - timedelta(hours=2))
    service.resolve("lottery_draw", now=now)
    with state._connect() as conn:
        conn.execute("DELETE FROM profiles WHERE id = 'p-1'")

    result = service.resolve("lottery_ticket", now=now).results[0]

    assert result.status == "failed"
    assert result.stage == "apply"
    assert state.get_unit("lottery_tickets", ticket["ticketId"])["status"] == "failed"
    assert state.get_unit("lottery_draws", "draw-1")["status"] == "completed"
