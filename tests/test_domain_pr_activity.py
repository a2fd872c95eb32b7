"""Tests for PR appearance and film shoot completion."""
from __future__ import annotations

from datetime import timedelta

import pytest

# Expected (fame, fans, cash) for a 100 fame / 50 fan / 500 pay offer, by outcome.
EXPECTED_REWARDS = {
    "solid_appearance": (100, 50, 500),
    "glowing_segment": (150, 70, 750),
    "viral_clip": (130, 100, 500),
    "awkward_interview": (50, 30, 500),
}

OFFER = {
    "offer_id": "offer-1",
    "media_type": "tv",
    "outlet_name": "Late Show",
    "fame_boost": 100,
    "fan_boost": 50,
    "compensation": 500,
}


def _add_activity(state, now, *, band_id=None, metadata=None, activity_type="pr_appearance"):
    state.add_scheduled_activity(
        "pr-1",
        "p-1",
        activity_type=activity_type,
        title="Late Show appearance",
        scheduled_start=now - timedelta(hours=2),
        scheduled_end=now - timedelta(minutes=10),
        metadata=OFFER if metadata is None else metadata,
        band_id=band_id,
    )


def test_band_appearance_pays_the_band(service, state, now):
    """Band offers credit band fame, fans and balance with ledger rows."""
    state.upsert_profile("p-1", "Ada", fame=10, cash=0)
    state.upsert_band("b-1", "The Static", fame=600, total_fans=1000, band_balance=0)
    _add_activity(state, now, band_id="b-1")

    result = service.resolve("pr_activity", now=now).results[0]

    assert result.status == "completed"
    fame, fans, cash = EXPECTED_REWARDS[result.outcome_code]
    assert result.summary == {
        "fameGained": fame,
        "fansGained": fans,
        "cash": cash,
        "outlet": "Late Show",
    }
    band = state.get_band("b-1")
    assert (band["fame"], band["total_fans"], band["band_balance"]) == (600 + fame, 1000 + fans, cash)
    assert state.get_profile("p-1")["cash"] == 0

    fame_events = state.list_rows("band_fame_events", band_id="b-1")
    assert fame_events[0]["fame_gained"] == fame
    earnings = state.list_rows("band_earnings", band_id="b-1")
    assert earnings[0]["amount"] == cash
    appearance = state.list_rows("media_appearances")[0]
    assert appearance["audience_reach"] == fans * 100
    expected_sentiment = "negative" if result.outcome_code == "awkward_interview" else "positive"
    assert appearance["sentiment"] == expected_sentiment

    event = state.list_events(domain="pr_activity")[0]
    assert event["band_id"] == "b-1"
    assert state.get_unit("scheduled_activities", "pr-1")["status"] == "completed"


def test_solo_appearance_pays_the_performer(service, state, now):
    """Without a band the performer's fame and cash move."""
    state.upsert_profile("p-1", "Ada", fame=10, cash=0)
    _add_activity(state, now)

    result = service.resolve("pr_activity", now=now).results[0]

    fame, _, cash = EXPECTED_REWARDS[result.outcome_code]
    profile = state.get_profile("p-1")
    assert (profile["fame"], profile["cash"]) == (10 + fame, cash)
    assert state.list_rows("band_fame_events") == []
    assert state.list_rows("media_appearances")[0]["band_id"] is None


def test_other_activity_types_are_ignored(service, state, now):
    """Rehearsals and other calendar entries are not PR activities."""
    state.upsert_profile("p-1", "Ada")
    _add_activity(state, now, activity_type="rehearsal")

    assert service.resolve("pr_activity", now=now).processed == 0
    explicit = service.resolve("pr_activity", unit_id="pr-1", now=now).results[0]
    assert explicit.reason == "NotYetEligible"


@pytest.mark.parametrize("activity_type", ["pr_appearance", "film_production"])
def test_both_pr_types_resolve(service, state, now, activity_type):
    """Film shoots resolve through the same path as appearances."""
    state.upsert_profile("p-1", "Ada")
    _add_activity(state, now, activity_type=activity_type)

    assert service.resolve("pr_activity", now=now).completed == 1


def test_malformed_metadata_fails_unit(service, state, now):
    """Metadata that is not an object cannot be resolved."""
    state.upsert_profile("p-1", "Ada")
    _add_activity(state, now, metadata=[1, 2, 3])

    result = service.resolve("pr_activity", now=now).results[0]

    assert result.status == "failed"
    assert result.stage == "select"
    assert state.get_unit("scheduled_activities", "pr-1")["status"] == "failed"
