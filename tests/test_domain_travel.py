"""Tests for travel completion."""
from __future__ import annotations

from datetime import timedelta

from rockmundo.models import UnitStatus


def _add_trip(state, now, trip_id="trip-1", *, status=UnitStatus.IN_PROGRESS, arrives=None):
    state.add_travel(
        trip_id,
        "p-1",
        from_city="Oslo",
        to_city="Berlin",
        departure_time=now - timedelta(hours=3),
        arrival_time=arrives or now - timedelta(minutes=5),
        status=status,
    )


def test_arrival_moves_traveller(service, state, now):
    """Arrived travellers end up in the destination city with a notification."""
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    _add_trip(state, now)

    summary = service.resolve("travel", now=now)

    result = summary.results[0]
    assert result.status == "completed"
    assert result.outcome_code == "arrived"
    assert result.summary == {"fromCity": "Oslo", "toCity": "Berlin"}
    assert state.get_profile("p-1")["current_city"] == "Berlin"
    row = state.get_unit("travels", "trip-1")
    assert row["status"] == "completed"
    assert row["arrived_at"] is not None
    notes = state.list_notifications("p-1")
    assert notes[0]["message"] == "Arrived in Berlin"
    assert state.list_events(domain="travel")[0]["event_type"] == "travel_completed"


def test_scheduled_trips_are_claimable(service, state, now):
    """Trips that never flipped to in-progress still complete."""
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    _add_trip(state, now, status=UnitStatus.SCHEDULED)

    assert service.resolve("travel", now=now).completed == 1


def test_second_trigger_is_already_completed(service, state, now):
    """Overlapping triggers apply the arrival once."""
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    _add_trip(state, now)
    service.resolve("travel", now=now)
    state.upsert_profile("p-1", "Ada", current_city="Paris")

    again = service.resolve("travel", unit_id="trip-1", now=now)

    assert again.results[0].status == "skipped"
    assert again.results[0].reason == "AlreadyCompleted"
    assert state.get_profile("p-1")["current_city"] == "Paris"
    assert len(state.list_notifications("p-1")) == 1


def test_trip_in_flight_is_left_alone(service, state, now):
    """Trips that have not arrived are neither discovered nor claimable."""
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    _add_trip(state, now, arrives=now + timedelta(hours=1))

    assert service.resolve("travel", now=now).processed == 0
    assert service.resolve("travel", unit_id="trip-1", now=now).results[0].reason == "NotYetEligible"
    assert state.get_profile("p-1")["current_city"] == "Oslo"


def test_unknown_trip(service, now):
    """Explicit triggers for missing units are reported as skipped."""
    result = service.resolve("travel", unit_id="nope", now=now).results[0]

    assert result.status == "skipped"
    assert result.reason == "UnitNotFound"


def test_traveller_without_profile_fails(service, state, now):
    """A trip whose profile is gone is marked failed and reported."""
    _add_trip(state, now)

    result = service.resolve("travel", now=now).results[0]

    assert result.status == "failed"
    assert "profile" in result.error
    assert state.get_unit("travels", "trip-1")["status"] == "failed"
