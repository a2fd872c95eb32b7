"""Tests for unit discovery: repeated scans see the same eligible units."""
from __future__ import annotations

from datetime import timedelta

import pytest

from rockmundo.catalog import CatalogLoader
from rockmundo.domains import build_resolver


def _seed_twaats(state, now):
    state.upsert_profile("p-1", "Ada")
    state.upsert_twaater_account("acct-1", "p-1", "ada")
    for index, minutes in enumerate((30, 90, 60)):
        state.add_twaat(
            f"tw-{index}",
            "acct-1",
            "Soundcheck done",
            created_at=now - timedelta(hours=3),
            resolve_after=now - timedelta(minutes=minutes),
        )
    state.add_twaat(
        "tw-future",
        "acct-1",
        "Tomorrow night",
        created_at=now,
        resolve_after=now + timedelta(hours=1),
    )


def _seed_relationships(state, now):
    for profile_id in ("p-1", "p-2", "p-3"):
        state.upsert_profile(profile_id, profile_id.upper())
    for index, minutes in enumerate((5, 45, 20)):
        state.add_relationship(
            f"rel-{index}",
            "p-1",
            f"p-{index % 2 + 2}",
            affection=40.0,
            last_interaction_at=now - timedelta(days=30),
            next_decay_at=now - timedelta(minutes=minutes),
        )


@pytest.mark.parametrize(
    "domain,seed,expected",
    [
        ("twaater", _seed_twaats, ["tw-1", "tw-2", "tw-0"]),
        ("relationship_decay", _seed_relationships, ["rel-1", "rel-2", "rel-0"]),
    ],
)
def test_discovery_is_repeatable(state, settings, now, domain, seed, expected):
    """Scanning twice without time passing yields the same ordered ids."""
    seed(state, now)
    resolver = build_resolver(domain, state, settings, CatalogLoader())
    stale_before = now - timedelta(minutes=settings.claim_ttl_minutes)

    first = resolver.discover(now, stale_before, settings.batch_limit)
    second = resolver.discover(now, stale_before, settings.batch_limit)

    assert first == second == expected
    assert len(set(first)) == len(first)


def test_resolved_units_leave_discovery(service, state, settings, now):
    """Completed one-shot units are not rediscovered; recurring ones wait a period."""
    _seed_twaats(state, now)
    _seed_relationships(state, now)
    assert service.resolve("twaater", now=now).completed == 3
    assert service.resolve("relationship_decay", now=now).completed == 3
    stale_before = now - timedelta(minutes=settings.claim_ttl_minutes)

    twaats = build_resolver("twaater", state, settings, CatalogLoader())
    decay = build_resolver("relationship_decay", state, settings, CatalogLoader())

    assert twaats.discover(now, stale_before, settings.batch_limit) == []
    assert decay.discover(now, stale_before, settings.batch_limit) == []
    later = now + timedelta(hours=settings.relationship_interval_hours)
    assert decay.discover(later, later - timedelta(minutes=15), settings.batch_limit) == [
        "rel-0",
        "rel-1",
        "rel-2",
    ]
