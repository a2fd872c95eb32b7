"""Tests for side-effect emission isolation."""
from __future__ import annotations

import sqlite3
from datetime import timedelta

from rockmundo.emitter import SideEffectEmitter
from rockmundo.models import EffectResult, EventLogEntry, ResolutionUnit, UnitStatus


def _add_trip(state, now):
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    state.add_travel(
        "trip-1",
        "p-1",
        from_city="Oslo",
        to_city="Berlin",
        departure_time=now - timedelta(hours=3),
        arrival_time=now - timedelta(minutes=5),
    )


def _boom(*args, **kwargs):
    raise sqlite3.OperationalError("disk I/O error")


def test_events_cite_persisted_outcome(state, now):
    """Emitted events carry the outcome code stored on the unit."""
    unit = ResolutionUnit(domain="travel", id="trip-1", status=UnitStatus.COMPLETED, eligible_at=now)
    result = EffectResult(
        unit_id="trip-1",
        outcome_code="arrived",
        events=[EventLogEntry("travel", "trip-1", "travel_completed", None, {}, now, "p-1")],
    )

    assert SideEffectEmitter(state).emit(unit, result) is None
    assert state.list_events(unit_id="trip-1")[0]["outcome_code"] == "arrived"


def test_emit_failure_is_returned_not_raised(state, telemetry, now, monkeypatch):
    """A broken log write yields an EmitFailure and an error metric."""
    monkeypatch.setattr(state, "record_side_effects", _boom)
    unit = ResolutionUnit(domain="travel", id="trip-1", status=UnitStatus.COMPLETED, eligible_at=now)
    result = EffectResult(
        unit_id="trip-1",
        outcome_code="arrived",
        events=[EventLogEntry("travel", "trip-1", "travel_completed", None, {}, now)],
    )

    failure = SideEffectEmitter(state, telemetry).emit(unit, result)

    assert failure is not None
    assert failure.unit_id == "trip-1"
    assert telemetry.get_error_summary() == {"EmitFailure": 1}


def test_emit_failure_keeps_committed_effects(service, state, now, monkeypatch):
    """Effects stay applied and the unit completed when emission fails."""
    _add_trip(state, now)
    monkeypatch.setattr(state, "record_side_effects", _boom)

    summary = service.resolve("travel", now=now)

    result = summary.results[0]
    assert result.status == "completed"
    assert "disk I/O error" in result.emit_error
    assert state.get_profile("p-1")["current_city"] == "Berlin"
    assert state.get_unit("travels", "trip-1")["status"] == "completed"
    assert state.list_events() == []


def test_nothing_to_emit(state, now, monkeypatch):
    """Results without events or notifications never touch the log."""
    monkeypatch.setattr(state, "record_side_effects", _boom)
    unit = ResolutionUnit(domain="travel", id="trip-1", status=UnitStatus.COMPLETED, eligible_at=now)

    assert SideEffectEmitter(state).emit(unit, EffectResult(unit_id="trip-1", outcome_code="x")) is None


def test_unexpected_emit_error_is_contained(state, telemetry, now, monkeypatch):
    """Errors other than storage errors are also reported rather than raised."""

    def bad_payload(*args, **kwargs):
        raise TypeError("Object of type set is not JSON serializable")

    monkeypatch.setattr(state, "record_side_effects", bad_payload)
    unit = ResolutionUnit(domain="travel", id="trip-1", status=UnitStatus.COMPLETED, eligible_at=now)
    result = EffectResult(
        unit_id="trip-1",
        outcome_code="arrived",
        events=[EventLogEntry("travel", "trip-1", "travel_completed", None, {}, now)],
    )

    failure = SideEffectEmitter(state, telemetry).emit(unit, result)

    assert "JSON serializable" in str(failure)
    assert telemetry.get_error_summary() == {"EmitFailure": 1}


def test_emit_error_does_not_stop_batch(service, state, now, monkeypatch):
    """Every unit in the batch still completes when emission keeps failing."""
    _add_trip(state, now)
    state.add_travel(
        "trip-2",
        "p-1",
        to_city="Rome",
        departure_time=now - timedelta(hours=2),
        arrival_time=now - timedelta(minutes=1),
    )

    def bad_payload(*args, **kwargs):
        raise ValueError("Circular reference detected")

    monkeypatch.setattr(state, "record_side_effects", bad_payload)

    summary = service.resolve("travel", now=now)

    assert summary.completed == 2
    assert all("Circular reference" in result.emit_error for result in summary.results)
    assert state.get_profile("p-1")["current_city"] == "Rome"
