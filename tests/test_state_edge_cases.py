"""Edge case tests for the persistent resolution state."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from rockmundo.errors import ClaimLostError
from rockmundo.models import EffectResult, EventLogEntry, NotificationEntry
from rockmundo.state import ResolutionState, from_iso, to_iso


def test_iso_round_trip_normalises_to_utc():
    """Naive timestamps are read as UTC and offsets are converted."""
    naive = datetime(2030, 1, 1, 12, 0)
    plus_two = datetime(2030, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert to_iso(naive) == to_iso(plus_two)
    assert from_iso(to_iso(naive)) == naive.replace(tzinfo=timezone.utc)
    assert from_iso(None) is None
    assert from_iso("") is None


def test_schema_creation_is_idempotent(tmp_path):
    """Opening the same database twice keeps existing rows."""
    path = tmp_path / "state.db"
    first = ResolutionState(path)
    first.upsert_profile("p-1", "Ada", cash=5)

    second = ResolutionState(path)
    assert second.get_profile("p-1")["cash"] == 5
    assert second.ping()


def test_unknown_unit_table_rejected(state):
    """Only resolution tables may be queried as units."""
    with pytest.raises(ValueError):
        state.get_unit("profiles", "p-1")
    with pytest.raises(ValueError):
        state.list_rows("profiles")


def test_eligible_units_ordered_and_limited(state, now):
    """Discovery returns the oldest eligible units first, up to the limit."""
    state.upsert_profile("p-1", "Ada")
    for index, offset in enumerate([3, 1, 2, -1]):
        state.add_travel(
            f"trip-{index}",
            "p-1",
            to_city="Rome",
            departure_time=now - timedelta(hours=5),
            arrival_time=now - timedelta(hours=offset),
        )

    ids = state.eligible_unit_ids(
        "travels",
        claimable=["in_progress"],
        now=now,
        stale_before=now - timedelta(minutes=15),
        limit=2,
    )

    assert ids == ["trip-0", "trip-2"]


def test_extra_where_filters_discovery(state, now):
    """Domain preconditions narrow the eligible set."""
    state.upsert_profile("p-1", "Ada")
    for trip_id, city in (("a", "Rome"), ("b", "Oslo")):
        state.add_travel(
            trip_id,
            "p-1",
            to_city=city,
            departure_time=now - timedelta(hours=5),
            arrival_time=now - timedelta(hours=1),
        )

    ids = state.eligible_unit_ids(
        "travels",
        claimable=["in_progress"],
        now=now,
        stale_before=now - timedelta(minutes=15),
        limit=10,
        extra_where="to_city = 'Oslo'",
    )
    assert ids == ["b"]


def test_unit_updates_limited_to_known_columns(state, now):
    """A result may not rewrite arbitrary unit columns."""
    state.upsert_profile("p-1", "Ada")
    state.add_travel(
        "trip-1", "p-1", to_city="Rome", departure_time=now, arrival_time=now - timedelta(minutes=1)
    )
    result = EffectResult(unit_id="trip-1", outcome_code="arrived", unit_updates={"to_city": "Paris"})

    with pytest.raises(ValueError):
        state.commit_resolution("travels", "trip-1", claim_token="tok", result=result, now=now)


def test_commit_without_claim_raises(state, now):
    """Completing a unit that was never claimed is a lost claim."""
    state.upsert_profile("p-1", "Ada")
    state.add_travel(
        "trip-1", "p-1", to_city="Rome", departure_time=now, arrival_time=now - timedelta(minutes=1)
    )
    result = EffectResult(unit_id="trip-1", outcome_code="arrived")

    with pytest.raises(ClaimLostError):
        state.commit_resolution("travels", "trip-1", claim_token="tok", result=result, now=now)
    assert state.get_unit("travels", "trip-1")["status"] == "in_progress"


def test_purchase_ticket_refuses_short_funds_and_closed_draws(state, now):
    """purchase_ticket() returns None rather than overdrawing or selling late."""
    state.upsert_profile("p-1", "Ada", cash=5)
    state.add_lottery_draw("draw-1", draw_at=now + timedelta(days=1))
    state.add_lottery_draw("draw-old", draw_at=now - timedelta(days=1))

    assert (
        state.purchase_ticket(
            "t-1", profile_id="p-1", draw_id="draw-1", numbers=[1, 2, 3, 4, 5, 6, 7],
            bonus_number=1, price=10, now=now,
        )
        is None
    )
    state.upsert_profile("p-1", "Ada", cash=50)
    assert (
        state.purchase_ticket(
            "t-2", profile_id="p-1", draw_id="draw-old", numbers=[1, 2, 3, 4, 5, 6, 7],
            bonus_number=1, price=10, now=now,
        )
        is None
    )
    assert state.get_profile("p-1")["cash"] == 50

    record = state.purchase_ticket(
        "t-3", profile_id="p-1", draw_id="draw-1", numbers=[7, 6, 5, 4, 3, 2, 1],
        bonus_number=1, price=10, now=now,
    )
    assert record is not None
    assert record["numbers"] == "[1, 2, 3, 4, 5, 6, 7]"
    assert state.get_profile("p-1")["cash"] == 40
    assert state.get_unit("lottery_tickets", "t-3")["eligible_at"] == to_iso(now + timedelta(days=1))


def test_side_effects_and_filters(state, now):
    """Events and notifications are stored and read back in order."""
    state.record_side_effects(
        [
            EventLogEntry("travel", "trip-1", "travel_completed", "arrived", {"toCity": "Rome"}, now, "p-1"),
            EventLogEntry("twaater", "tw-1", "twaat_outcome", "quiet_scroll", {}, now),
        ],
        [NotificationEntry("p-1", "travel", "Arrived", "You are in Rome", now)],
    )

    travel_events = state.list_events(domain="travel")
    assert [event["unit_id"] for event in travel_events] == ["trip-1"]
    assert travel_events[0]["payload"] == {"toCity": "Rome"}
    assert len(state.list_events()) == 2
    assert state.list_notifications("p-1")[0]["is_read"] == 0


def test_job_run_lifecycle(state, now):
    """Job runs move from running to completed or failed with a summary."""
    ok = state.start_job_run("resolve-travel", triggered_by="cron", request_payload={"a": 1}, now=now)
    state.complete_job_run(ok, duration_ms=12.5, processed_count=3, error_count=1, result_summary={"completed": 2})
    bad = state.start_job_run("resolve-travel", now=now)
    state.fail_job_run(bad, duration_ms=1.0, error="catalog missing")

    runs = state.list_job_runs("resolve-travel")
    assert [run["id"] for run in runs] == [bad, ok]
    assert runs[0]["status"] == "failed"
    assert runs[0]["error_message"] == "catalog missing"
    assert runs[1]["status"] == "completed"
    assert runs[1]["request_payload"] == {"a": 1}
    assert runs[1]["result_summary"] == {"completed": 2}
    assert runs[1]["processed_count"] == 3
