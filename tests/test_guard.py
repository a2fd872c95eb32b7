"""Tests for the at-most-once completion guard."""
from __future__ import annotations

import threading
from datetime import timedelta

from rockmundo.guard import CompletionGuard
from rockmundo.models import SkipReason, UnitStatus


def _guard(state) -> CompletionGuard:
    return CompletionGuard(
        state,
        table="travels",
        claimable=[UnitStatus.SCHEDULED, UnitStatus.IN_PROGRESS],
        claim_ttl=timedelta(minutes=15),
    )


def _add_trip(state, now, trip_id="trip-1", *, arrives_in=timedelta(minutes=-5)):
    state.upsert_profile("p-1", "Ada", current_city="Oslo")
    state.add_travel(
        trip_id,
        "p-1",
        from_city="Oslo",
        to_city="Berlin",
        departure_time=now - timedelta(hours=3),
        arrival_time=now + arrives_in,
    )


def test_second_claim_is_refused(state, now):
    """Only the first caller gets the claim; the second sees it in progress."""
    _add_trip(state, now)
    guard = _guard(state)

    first = guard.try_begin_completion("trip-1", now)
    second = guard.try_begin_completion("trip-1", now)

    assert first.allowed and first.token
    assert not second.allowed
    assert second.reason == SkipReason.CLAIM_IN_PROGRESS


def test_future_unit_not_yet_eligible(state, now):
    """Units whose time has not come cannot be claimed."""
    _add_trip(state, now, arrives_in=timedelta(hours=1))

    result = _guard(state).try_begin_completion("trip-1", now)

    assert result.reason == SkipReason.NOT_YET_ELIGIBLE


def test_missing_unit(state, now):
    """Unknown ids are reported rather than raised."""
    assert _guard(state).try_begin_completion("nope", now).reason == SkipReason.UNIT_NOT_FOUND


def test_failed_units_stay_failed(state, now):
    """A unit marked failed is not picked up again."""
    _add_trip(state, now)
    guard = _guard(state)
    claim = guard.try_begin_completion("trip-1", now)
    assert guard.fail("trip-1", claim.token, "bad data")

    assert guard.try_begin_completion("trip-1", now).reason == SkipReason.FAILED
    assert state.get_unit("travels", "trip-1")["last_error"] == "bad data"


def test_release_restores_prior_status(state, now):
    """Releasing hands the unit back in the status it was claimed from."""
    _add_trip(state, now)
    guard = _guard(state)
    claim = guard.try_begin_completion("trip-1", now)

    assert guard.release("trip-1", claim.token, error="boom")
    row = state.get_unit("travels", "trip-1")
    assert row["status"] == UnitStatus.IN_PROGRESS.value
    assert row["claim_token"] is None
    assert guard.try_begin_completion("trip-1", now).allowed


def test_release_with_wrong_token_is_noop(state, now):
    """A caller that lost its claim cannot release someone else's."""
    _add_trip(state, now)
    guard = _guard(state)
    guard.try_begin_completion("trip-1", now)

    assert not guard.release("trip-1", "not-mine")
    assert state.get_unit("travels", "trip-1")["status"] == UnitStatus.CLAIMED.value


def test_abandoned_claim_taken_over_after_ttl(state, now):
    """A claim older than the TTL is treated as abandoned."""
    _add_trip(state, now, arrives_in=timedelta(hours=-1))
    guard = _guard(state)
    stale = guard.try_begin_completion("trip-1", now - timedelta(minutes=30))
    assert stale.allowed

    takeover = guard.try_begin_completion("trip-1", now)

    assert takeover.allowed
    assert takeover.token != stale.token
    assert state.get_unit("travels", "trip-1")["prior_status"] == UnitStatus.IN_PROGRESS.value


def test_reclaim_stale_returns_units(state, now):
    """reclaim_stale() resets only claims older than the TTL."""
    _add_trip(state, now, "old", arrives_in=timedelta(hours=-1))
    _add_trip(state, now, "fresh", arrives_in=timedelta(hours=-1))
    guard = _guard(state)
    guard.try_begin_completion("old", now - timedelta(minutes=20))
    guard.try_begin_completion("fresh", now - timedelta(minutes=5))

    assert guard.reclaim_stale(now) == 1
    assert state.get_unit("travels", "old")["status"] == UnitStatus.IN_PROGRESS.value
    assert state.get_unit("travels", "old")["last_error"] == "claim expired"
    assert state.get_unit("travels", "fresh")["status"] == UnitStatus.CLAIMED.value


def test_concurrent_claims_admit_exactly_one(state, now):
    """Many threads racing for the same unit yield exactly one claim."""
    _add_trip(state, now)
    guard = _guard(state)
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        outcome = guard.try_begin_completion("trip-1", now)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for result in results if result.allowed) == 1
    assert all(
        result.reason == SkipReason.CLAIM_IN_PROGRESS for result in results if not result.allowed
    )
