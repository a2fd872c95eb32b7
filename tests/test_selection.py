"""Tests for weighted selection and prize lookup."""
from __future__ import annotations

from collections import Counter

import pytest

from rockmundo.catalog import load_catalog, load_prize_tiers
from rockmundo.errors import ConfigurationError
from rockmundo.models import OutcomeDefinition, PrizeTier, WeightAdjustment
from rockmundo.rng import DeterministicRNG
from rockmundo.selection import (
    PrizeTable,
    WeightedSelector,
    count_matches,
    effective_weights,
)

# Chi-squared critical value at p = 0.001 for 9 degrees of freedom.
CHI2_CRITICAL_DF9 = 27.877


def _outcome(code: str, group: str, weight: float) -> OutcomeDefinition:
    return OutcomeDefinition(code=code, group=group, base_weight=weight)


def test_effective_weights_apply_group_factors():
    """Each outcome's weight is multiplied by its group's factor only."""
    catalog = load_catalog("twaater")
    weights = dict(
        (outcome.code, weight)
        for outcome, weight in effective_weights(catalog, [WeightAdjustment("Growth", 1.5)])
    )

    assert weights["new_followers"] == pytest.approx(15.0)
    assert weights["discovery_feed"] == pytest.approx(7.5)
    assert weights["quiet_scroll"] == pytest.approx(30.0)


def test_selection_frequencies_match_weights():
    """Observed frequencies over many draws track the effective weights."""
    catalog = load_catalog("twaater")
    selector = WeightedSelector(catalog)
    adjustments = [WeightAdjustment("Growth", 1.5)]
    rng = DeterministicRNG(1987)
    draws = 20000

    counts = Counter(selector.select(rng, adjustments).code for _ in range(draws))
    chi2 = 0.0
    for outcome, probability in selector.probabilities(adjustments):
        expected = probability * draws
        chi2 += (counts[outcome.code] - expected) ** 2 / expected

    assert len(catalog) == 10
    assert chi2 < CHI2_CRITICAL_DF9


def test_zero_weight_outcome_never_selected():
    """An outcome with zero effective weight is never chosen."""
    selector = WeightedSelector([_outcome("never", "A", 0), _outcome("always", "B", 1)])
    rng = DeterministicRNG(5)

    assert {selector.select(rng).code for _ in range(500)} == {"always"}


def test_all_zero_weights_fall_back_to_first_entry():
    """With no positive weight the first catalog entry is returned."""
    selector = WeightedSelector([_outcome("first", "A", 0), _outcome("second", "B", 0)])

    assert selector.select(DeterministicRNG(1)).code == "first"
    assert [p for _, p in selector.probabilities()] == [1.0, 0.0]


def test_same_seed_same_outcome():
    """Replaying a seed replays the selection."""
    selector = WeightedSelector(load_catalog("pr_activity"))
    first = [selector.select(DeterministicRNG(77)).code for _ in range(3)]

    assert len(set(first)) == 1


def test_empty_catalog_rejected():
    """A selector needs at least one outcome."""
    with pytest.raises(ConfigurationError):
        WeightedSelector([])


def test_six_matches_with_bonus_wins_match_6_bonus():
    """One main number off with the bonus drawn lands on the 6+bonus tier."""
    table = PrizeTable(load_prize_tiers("lottery_ticket"))
    matches, bonus = count_matches([3, 11, 19, 24, 31, 40, 48], 5, [3, 11, 19, 24, 31, 40, 47], 5)
    award = table.lookup(matches, bonus)

    assert (matches, bonus) == (6, True)
    assert award.code == "match_6_bonus"
    assert (award.cash, award.xp) == (50000, 2000)


def test_jackpot_and_no_prize():
    """All seven plus bonus is the jackpot; two matches pay nothing."""
    table = PrizeTable(load_prize_tiers("lottery_ticket"))

    assert table.lookup(7, True).code == "jackpot"
    assert table.lookup(7, False).code == "match_7"
    assert table.lookup(4, True).code == "match_4"
    nothing = table.lookup(2, True)
    assert nothing.tier is None
    assert (nothing.code, nothing.cash, nothing.xp) == ("no_prize", 0, 0)


def test_prize_payout_monotone_in_matches():
    """More matches never pay less, bonus held constant."""
    table = PrizeTable(load_prize_tiers("lottery_ticket"))
    for bonus in (False, True):
        payouts = [table.lookup(matches, bonus).cash for matches in range(8)]
        assert payouts == sorted(payouts)


def test_prize_table_sorts_given_tiers():
    """Tiers passed out of order are still scanned from the top."""
    table = PrizeTable(
        [PrizeTier(matches=3, bonus=False, cash=5, xp=1), PrizeTier(matches=5, bonus=False, cash=50, xp=5)]
    )

    assert table.lookup(6, False).cash == 50
    assert [tier.matches for tier in table.tiers] == [5, 3]
