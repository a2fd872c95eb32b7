"""Seed the database with a small demo world."""
from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from ..state import ResolutionState


def seed_database(path: Path, now: Optional[datetime] = None) -> ResolutionState:
    now = now or datetime.now(timezone.utc)
    state = ResolutionState(path)

    state.upsert_profile("p-ada", "Ada Riff", fame=650, cash=500, current_city="London")
    state.upsert_profile("p-ben", "Ben Bass", fame=40, cash=120, current_city="London")
    state.upsert_profile("p-cleo", "Cleo Keys", fame=220, cash=80, current_city="Berlin")
    state.upsert_band("b-static", "The Static", fame=800, total_fans=1200, band_balance=300)
    state.add_band_chemistry("b-static", next_drift_at=now, conflict_index=60, creative_alignment=40)

    state.upsert_twaater_account("acct-ada", "p-ada", "adariff", follower_count=900)
    state.upsert_twaater_account("acct-ben", "p-ben", "benbass", follower_count=35)
    state.add_twaat(
        "tw-1",
        "acct-ada",
        "New single out Friday! Pre-save now and catch us on tour all summer long, every city we can reach.",
        created_at=now - timedelta(hours=2),
        resolve_after=now - timedelta(hours=1),
        linked_type="release",
        linked_id="rel-1",
    )
    state.add_twaat(
        "tw-2",
        "acct-ben",
        "Practising scales again.",
        created_at=now - timedelta(minutes=30),
        resolve_after=now - timedelta(minutes=5),
    )

    state.add_lottery_draw("draw-weekly", draw_at=now + timedelta(days=1))
    state.add_travel(
        "trip-1",
        "p-cleo",
        from_city="Berlin",
        to_city="Paris",
        departure_time=now - timedelta(hours=6),
        arrival_time=now - timedelta(minutes=10),
    )
    state.add_scheduled_activity(
        "pr-1",
        "p-ada",
        band_id="b-static",
        activity_type="pr_appearance",
        title="PR: RADIO Appearance",
        scheduled_start=now - timedelta(hours=2),
        scheduled_end=now - timedelta(hours=1),
        metadata={
            "offer_id": "offer-1",
            "media_type": "radio",
            "outlet_name": "Night Waves FM",
            "compensation": 400,
            "fame_boost": 30,
            "fan_boost": 120,
        },
    )
    state.add_relationship(
        "rel-ada-ben",
        "p-ada",
        "p-ben",
        affection=55,
        last_interaction_at=now - timedelta(days=20),
        next_decay_at=now,
    )
    state.upsert_song("song-static", "Feedback Loop", genre="Rock", quality_score=55)
    state.upsert_label("lbl-north", "Northside Records", genre_focus=["Indie Rock"], reputation_score=40)
    state.add_label_deal_type("deal-north-std", "lbl-north", "Standard")
    state.add_release("release-static-1", band_id="b-static")
    state.add_demo_submission(
        "demo-1",
        "song-static",
        "lbl-north",
        submitted_at=now - timedelta(days=2),
        review_after=now - timedelta(days=1),
        band_id="b-static",
        artist_profile_id="p-ada",
    )
    state.add_jam_session(
        "jam-1",
        "p-ben",
        started_at=now - timedelta(minutes=90),
        ends_at=now - timedelta(minutes=5),
        genre="Funk",
        tempo=100,
    )
    state.add_jam_participant("jam-1", "p-ben", "instruments_basic_bass_guitar")
    state.add_jam_participant("jam-1", "p-cleo", "instruments_basic_keyboard")
    return state


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a Rockmundo resolver database")
    parser.add_argument("db", type=Path, help="Path to SQLite database")
    args = parser.parse_args()
    seed_database(args.db)
    print(f"Seeded demo profiles, bands and pending units into {args.db}")


if __name__ == "__main__":  # pragma: no cover - CLI tool
    main()
