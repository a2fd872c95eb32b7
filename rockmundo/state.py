"""Persistent game state for resolution units and their aggregates."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import ClaimLostError
from .models import EffectResult, EventLogEntry, NotificationEntry, UnitStatus

logger = logging.getLogger(__name__)

_UNIT_COLUMNS = """
    status TEXT NOT NULL DEFAULT 'pending',
    eligible_at TEXT NOT NULL,
    claimed_at TEXT,
    claim_token TEXT,
    prior_status TEXT,
    completed_at TEXT,
    outcome_code TEXT,
    last_error TEXT
"""

_DB_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    fame INTEGER NOT NULL DEFAULT 0,
    cash INTEGER NOT NULL DEFAULT 0,
    experience INTEGER NOT NULL DEFAULT 0,
    fans INTEGER NOT NULL DEFAULT 0,
    current_city TEXT
);
CREATE TABLE IF NOT EXISTS bands (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    fame INTEGER NOT NULL DEFAULT 0,
    total_fans INTEGER NOT NULL DEFAULT 0,
    band_balance INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS twaater_accounts (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    handle TEXT NOT NULL,
    follower_count INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS twaats (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    body TEXT NOT NULL,
    linked_type TEXT,
    linked_id TEXT,
    created_at TEXT NOT NULL,
    {_UNIT_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_twaats_status ON twaats (status, eligible_at);
CREATE TABLE IF NOT EXISTS twaat_metrics (
    twaat_id TEXT PRIMARY KEY,
    likes INTEGER NOT NULL DEFAULT 0,
    replies INTEGER NOT NULL DEFAULT 0,
    retwaats INTEGER NOT NULL DEFAULT 0,
    impressions INTEGER NOT NULL DEFAULT 0,
    followers_gained INTEGER NOT NULL DEFAULT 0,
    outcome_code TEXT,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS lottery_draws (
    id TEXT PRIMARY KEY,
    winning_numbers TEXT,
    bonus_number INTEGER,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS lottery_tickets (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    draw_id TEXT NOT NULL,
    numbers TEXT NOT NULL,
    bonus_number INTEGER,
    purchased_at TEXT NOT NULL,
    matches INTEGER,
    bonus_matched INTEGER,
    prize_cash INTEGER NOT NULL DEFAULT 0,
    prize_xp INTEGER NOT NULL DEFAULT 0,
    {_UNIT_COLUMNS}
);
CREATE INDEX IF NOT EXISTS idx_lottery_tickets_draw ON lottery_tickets (draw_id, status);
CREATE TABLE IF NOT EXISTS travels (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    from_city TEXT,
    to_city TEXT NOT NULL,
    departure_time TEXT NOT NULL,
    arrived_at TEXT,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS scheduled_activities (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    band_id TEXT,
    activity_type TEXT NOT NULL,
    title TEXT NOT NULL,
    scheduled_start TEXT NOT NULL,
    metadata TEXT NOT NULL,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS band_fame_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    band_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    fame_gained INTEGER NOT NULL,
    event_data TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS band_earnings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    band_id TEXT NOT NULL,
    amount INTEGER NOT NULL,
    source TEXT NOT NULL,
    description TEXT NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS media_appearances (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    band_id TEXT,
    media_type TEXT NOT NULL,
    program_name TEXT NOT NULL,
    network TEXT,
    air_date TEXT,
    audience_reach INTEGER NOT NULL DEFAULT 0,
    sentiment TEXT,
    highlight TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS relationships (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    other_profile_id TEXT NOT NULL,
    affection REAL NOT NULL DEFAULT 0,
    last_interaction_at TEXT NOT NULL,
    last_decay_at TEXT,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS band_chemistry (
    id TEXT PRIMARY KEY,
    band_id TEXT NOT NULL,
    chemistry_level INTEGER NOT NULL DEFAULT 50,
    conflict_index INTEGER NOT NULL DEFAULT 0,
    romantic_tension INTEGER NOT NULL DEFAULT 0,
    creative_alignment INTEGER NOT NULL DEFAULT 50,
    last_drift_at TEXT,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS songs (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    genre TEXT,
    tempo INTEGER,
    quality_score INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'draft',
    duration_seconds INTEGER,
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS releases (
    id TEXT PRIMARY KEY,
    band_id TEXT,
    profile_id TEXT,
    release_status TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS labels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    genre_focus TEXT NOT NULL DEFAULT '[]',
    reputation_score INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS label_deal_types (
    id TEXT PRIMARY KEY,
    label_id TEXT NOT NULL,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS demo_submissions (
    id TEXT PRIMARY KEY,
    song_id TEXT NOT NULL,
    label_id TEXT NOT NULL,
    band_id TEXT,
    artist_profile_id TEXT,
    submitted_at TEXT NOT NULL,
    reviewed_at TEXT,
    contract_offer_id TEXT,
    rejection_reason TEXT,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS artist_label_contracts (
    id TEXT PRIMARY KEY,
    label_id TEXT NOT NULL,
    deal_type_id TEXT NOT NULL,
    band_id TEXT,
    artist_profile_id TEXT,
    status TEXT NOT NULL,
    advance_amount INTEGER NOT NULL,
    royalty_artist_pct INTEGER NOT NULL,
    royalty_label_pct INTEGER NOT NULL,
    single_quota INTEGER NOT NULL,
    album_quota INTEGER NOT NULL,
    release_quota INTEGER NOT NULL,
    term_months INTEGER NOT NULL,
    termination_fee_pct INTEGER NOT NULL,
    manufacturing_covered INTEGER NOT NULL,
    territories TEXT NOT NULL,
    contract_value INTEGER NOT NULL,
    demo_submission_id TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS jam_sessions (
    id TEXT PRIMARY KEY,
    host_id TEXT NOT NULL,
    genre TEXT,
    tempo INTEGER,
    started_at TEXT NOT NULL,
    mood_score INTEGER,
    synergy_score INTEGER,
    total_xp_awarded INTEGER,
    gifted_song_id TEXT,
    {_UNIT_COLUMNS}
);
CREATE TABLE IF NOT EXISTS jam_session_participants (
    jam_session_id TEXT NOT NULL,
    profile_id TEXT NOT NULL,
    instrument_skill_slug TEXT,
    PRIMARY KEY (jam_session_id, profile_id)
);
CREATE TABLE IF NOT EXISTS jam_session_outcomes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    participant_id TEXT NOT NULL,
    xp_earned INTEGER NOT NULL,
    chemistry_gained INTEGER NOT NULL,
    skill_slug TEXT NOT NULL,
    skill_xp_gained INTEGER NOT NULL,
    gifted_song_id TEXT,
    performance_rating INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS skill_progress (
    profile_id TEXT NOT NULL,
    skill_slug TEXT NOT NULL,
    current_xp INTEGER NOT NULL DEFAULT 0,
    last_practiced_at TEXT,
    PRIMARY KEY (profile_id, skill_slug)
);
CREATE TABLE IF NOT EXISTS jam_gifted_song_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    song_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_gifted_song_profile ON jam_gifted_song_log (profile_id, created_at);
CREATE TABLE IF NOT EXISTS event_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain TEXT NOT NULL,
    unit_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    outcome_code TEXT,
    profile_id TEXT,
    band_id TEXT,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_log_unit ON event_log (domain, unit_id);
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL,
    is_read INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_notifications_profile ON notifications (profile_id, created_at DESC);
CREATE TABLE IF NOT EXISTS job_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_name TEXT NOT NULL,
    triggered_by TEXT,
    request_payload TEXT,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    duration_ms REAL,
    processed_count INTEGER,
    error_count INTEGER,
    result_summary TEXT,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_job_runs_name ON job_runs (job_name, started_at DESC);
"""

UNIT_TABLES = frozenset(
    {
        "twaats",
        "lottery_draws",
        "lottery_tickets",
        "travels",
        "scheduled_activities",
        "relationships",
        "band_chemistry",
        "demo_submissions",
        "jam_sessions",
    }
)

# Columns the effect applicator may change, per table.
_WRITABLE_COLUMNS: Dict[str, frozenset] = {
    "profiles": frozenset({"fame", "cash", "experience", "current_city"}),
    "bands": frozenset({"fame", "total_fans", "band_balance"}),
    "twaater_accounts": frozenset({"follower_count"}),
    "relationships": frozenset({"affection"}),
    "band_chemistry": frozenset(
        {"chemistry_level", "conflict_index", "romantic_tension", "creative_alignment"}
    ),
    "lottery_draws": frozenset({"winning_numbers", "bonus_number"}),
}

_INSERTABLE_TABLES = frozenset(
    {
        "twaat_metrics",
        "band_fame_events",
        "band_earnings",
        "media_appearances",
        "artist_label_contracts",
        "songs",
        "jam_session_outcomes",
        "jam_gifted_song_log",
        "skill_progress",
    }
)

_UNIT_UPDATE_COLUMNS: Dict[str, frozenset] = {
    "twaats": frozenset(),
    "lottery_draws": frozenset({"winning_numbers", "bonus_number"}),
    "lottery_tickets": frozenset({"matches", "bonus_matched", "prize_cash", "prize_xp"}),
    "travels": frozenset({"arrived_at"}),
    "scheduled_activities": frozenset(),
    "relationships": frozenset({"last_decay_at"}),
    "band_chemistry": frozenset({"last_drift_at"}),
    "demo_submissions": frozenset({"reviewed_at", "contract_offer_id", "rejection_reason"}),
    "jam_sessions": frozenset(
        {"total_xp_awarded", "mood_score", "synergy_score", "gifted_song_id"}
    ),
}

_KEY_COLUMNS = frozenset({"id", "band_id", "profile_id", "twaat_id"})


def to_iso(value: datetime) -> str:
    """Normalise timestamps so lexical order matches chronological order."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_unit_table(table: str) -> None:
    if table not in UNIT_TABLES:
        raise ValueError(f"{table!r} is not a resolution unit table")


class ResolutionState:
    """High level interface for working with persistent state."""

    def __init__(self, db_path: Path, *, timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()

    def ping(self) -> bool:
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            logger.exception("State database is unreachable")
            return False
        return True

    def _fetch_one(self, query: str, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        with closing(self._connect()) as conn:
            row = conn.execute(query, params).fetchone()
        return dict(row) if row else None

    def _fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def _insert(self, table: str, values: Dict[str, Any]) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with closing(self._connect()) as conn:
            conn.execute(
                f"REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            conn.commit()

    # Owners and aggregates ---------------------------------------------
    def upsert_profile(
        self,
        profile_id: str,
        display_name: str,
        *,
        fame: int = 0,
        cash: int = 0,
        experience: int = 0,
        fans: int = 0,
        current_city: Optional[str] = None,
    ) -> None:
        self._insert(
            "profiles",
            {
                "id": profile_id,
                "display_name": display_name,
                "fame": fame,
                "cash": cash,
                "experience": experience,
                "fans": fans,
                "current_city": current_city,
            },
        )

    def get_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM profiles WHERE id = ?", (profile_id,))

    def upsert_band(
        self,
        band_id: str,
        name: str,
        *,
        fame: int = 0,
        total_fans: int = 0,
        band_balance: int = 0,
    ) -> None:
        self._insert(
            "bands",
            {
                "id": band_id,
                "name": name,
                "fame": fame,
                "total_fans": total_fans,
                "band_balance": band_balance,
            },
        )

    def get_band(self, band_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM bands WHERE id = ?", (band_id,))

    def upsert_twaater_account(
        self, account_id: str, profile_id: str, handle: str, *, follower_count: int = 0
    ) -> None:
        self._insert(
            "twaater_accounts",
            {
                "id": account_id,
                "profile_id": profile_id,
                "handle": handle,
                "follower_count": follower_count,
            },
        )

    def get_twaater_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM twaater_accounts WHERE id = ?", (account_id,))

    # Songs, labels and skills --------------------------------------------
    def upsert_song(
        self,
        song_id: str,
        title: str,
        *,
        genre: Optional[str] = None,
        tempo: Optional[int] = None,
        quality_score: int = 0,
        status: str = "draft",
        duration_seconds: Optional[int] = None,
    ) -> None:
        self._insert(
            "songs",
            {
                "id": song_id,
                "title": title,
                "genre": genre,
                "tempo": tempo,
                "quality_score": quality_score,
                "status": status,
                "duration_seconds": duration_seconds,
            },
        )

    def get_song(self, song_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM songs WHERE id = ?", (song_id,))

    def add_release(
        self,
        release_id: str,
        *,
        band_id: Optional[str] = None,
        profile_id: Optional[str] = None,
        release_status: str = "released",
    ) -> None:
        self._insert(
            "releases",
            {
                "id": release_id,
                "band_id": band_id,
                "profile_id": profile_id,
                "release_status": release_status,
            },
        )

    def count_releases(
        self, *, band_id: Optional[str] = None, profile_id: Optional[str] = None
    ) -> int:
        """Released records credited to a band or, without one, to a solo artist."""

        column, key = ("band_id", band_id) if band_id else ("profile_id", profile_id)
        row = self._fetch_one(
            f"SELECT COUNT(*) AS total FROM releases WHERE {column} = ? "
            "AND release_status = 'released'",
            (key,),
        )
        return int(row["total"]) if row else 0

    def upsert_label(
        self,
        label_id: str,
        name: str,
        *,
        genre_focus: Sequence[str] = (),
        reputation_score: int = 0,
    ) -> None:
        self._insert(
            "labels",
            {
                "id": label_id,
                "name": name,
                "genre_focus": json.dumps(list(genre_focus)),
                "reputation_score": reputation_score,
            },
        )

    def get_label(self, label_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM labels WHERE id = ?", (label_id,))

    def add_label_deal_type(self, deal_type_id: str, label_id: str, name: str) -> None:
        self._insert("label_deal_types", {"id": deal_type_id, "label_id": label_id, "name": name})

    def first_deal_type(self, label_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT * FROM label_deal_types WHERE label_id = ? ORDER BY id LIMIT 1", (label_id,)
        )

    def set_skill_xp(
        self,
        profile_id: str,
        skill_slug: str,
        current_xp: int,
        *,
        last_practiced_at: Optional[datetime] = None,
    ) -> None:
        self._insert(
            "skill_progress",
            {
                "profile_id": profile_id,
                "skill_slug": skill_slug,
                "current_xp": current_xp,
                "last_practiced_at": to_iso(last_practiced_at) if last_practiced_at else None,
            },
        )

    def get_skill_xp(self, profile_id: str, skill_slug: str) -> int:
        row = self._fetch_one(
            "SELECT current_xp FROM skill_progress WHERE profile_id = ? AND skill_slug = ?",
            (profile_id, skill_slug),
        )
        return int(row["current_xp"]) if row else 0

    # Resolution units ----------------------------------------------------
    def add_twaat(
        self,
        twaat_id: str,
        account_id: str,
        body: str,
        *,
        created_at: datetime,
        resolve_after: datetime,
        linked_type: Optional[str] = None,
        linked_id: Optional[str] = None,
    ) -> None:
        self._insert(
            "twaats",
            {
                "id": twaat_id,
                "account_id": account_id,
                "body": body,
                "linked_type": linked_type,
                "linked_id": linked_id,
                "created_at": to_iso(created_at),
                "status": UnitStatus.PENDING.value,
                "eligible_at": to_iso(resolve_after),
            },
        )

    def get_twaat_metrics(self, twaat_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM twaat_metrics WHERE twaat_id = ?", (twaat_id,))

    def add_lottery_draw(self, draw_id: str, *, draw_at: datetime) -> None:
        self._insert(
            "lottery_draws",
            {
                "id": draw_id,
                "status": UnitStatus.SCHEDULED.value,
                "eligible_at": to_iso(draw_at),
            },
        )

    def add_travel(
        self,
        travel_id: str,
        profile_id: str,
        *,
        to_city: str,
        departure_time: datetime,
        arrival_time: datetime,
        from_city: Optional[str] = None,
        status: UnitStatus = UnitStatus.IN_PROGRESS,
    ) -> None:
        self._insert(
            "travels",
            {
                "id": travel_id,
                "profile_id": profile_id,
                "from_city": from_city,
                "to_city": to_city,
                "departure_time": to_iso(departure_time),
                "status": status.value,
                "eligible_at": to_iso(arrival_time),
            },
        )

    def add_scheduled_activity(
        self,
        activity_id: str,
        profile_id: str,
        *,
        activity_type: str,
        title: str,
        scheduled_start: datetime,
        scheduled_end: datetime,
        metadata: Dict[str, Any],
        band_id: Optional[str] = None,
    ) -> None:
        self._insert(
            "scheduled_activities",
            {
                "id": activity_id,
                "profile_id": profile_id,
                "band_id": band_id,
                "activity_type": activity_type,
                "title": title,
                "scheduled_start": to_iso(scheduled_start),
                "metadata": json.dumps(metadata),
                "status": UnitStatus.SCHEDULED.value,
                "eligible_at": to_iso(scheduled_end),
            },
        )

    def add_relationship(
        self,
        relationship_id: str,
        profile_id: str,
        other_profile_id: str,
        *,
        affection: float,
        last_interaction_at: datetime,
        next_decay_at: datetime,
    ) -> None:
        self._insert(
            "relationships",
            {
                "id": relationship_id,
                "profile_id": profile_id,
                "other_profile_id": other_profile_id,
                "affection": affection,
                "last_interaction_at": to_iso(last_interaction_at),
                "status": UnitStatus.PENDING.value,
                "eligible_at": to_iso(next_decay_at),
            },
        )

    def add_band_chemistry(
        self,
        band_id: str,
        *,
        next_drift_at: datetime,
        chemistry_level: int = 50,
        conflict_index: int = 0,
        romantic_tension: int = 0,
        creative_alignment: int = 50,
    ) -> None:
        self._insert(
            "band_chemistry",
            {
                "id": band_id,
                "band_id": band_id,
                "chemistry_level": chemistry_level,
                "conflict_index": conflict_index,
                "romantic_tension": romantic_tension,
                "creative_alignment": creative_alignment,
                "status": UnitStatus.PENDING.value,
                "eligible_at": to_iso(next_drift_at),
            },
        )

    def add_demo_submission(
        self,
        demo_id: str,
        song_id: str,
        label_id: str,
        *,
        submitted_at: datetime,
        review_after: datetime,
        band_id: Optional[str] = None,
        artist_profile_id: Optional[str] = None,
    ) -> None:
        self._insert(
            "demo_submissions",
            {
                "id": demo_id,
                "song_id": song_id,
                "label_id": label_id,
                "band_id": band_id,
                "artist_profile_id": artist_profile_id,
                "submitted_at": to_iso(submitted_at),
                "status": UnitStatus.PENDING.value,
                "eligible_at": to_iso(review_after),
            },
        )

    def add_jam_session(
        self,
        session_id: str,
        host_id: str,
        *,
        started_at: datetime,
        ends_at: datetime,
        genre: Optional[str] = None,
        tempo: Optional[int] = None,
        mood_score: Optional[int] = None,
        status: UnitStatus = UnitStatus.ACTIVE,
    ) -> None:
        self._insert(
            "jam_sessions",
            {
                "id": session_id,
                "host_id": host_id,
                "genre": genre,
                "tempo": tempo,
                "started_at": to_iso(started_at),
                "mood_score": mood_score,
                "status": status.value,
                "eligible_at": to_iso(ends_at),
            },
        )

    def add_jam_participant(
        self, session_id: str, profile_id: str, instrument_skill_slug: Optional[str] = None
    ) -> None:
        self._insert(
            "jam_session_participants",
            {
                "jam_session_id": session_id,
                "profile_id": profile_id,
                "instrument_skill_slug": instrument_skill_slug,
            },
        )

    def list_jam_participants(self, session_id: str) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "SELECT profile_id, instrument_skill_slug FROM jam_session_participants "
            "WHERE jam_session_id = ? ORDER BY rowid",
            (session_id,),
        )

    def count_gifted_songs(self, profile_id: str, since: datetime) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) AS total FROM jam_gifted_song_log "
            "WHERE profile_id = ? AND created_at >= ?",
            (profile_id, to_iso(since)),
        )
        return int(row["total"]) if row else 0

    def get_unit(self, table: str, unit_id: str) -> Optional[Dict[str, Any]]:
        _check_unit_table(table)
        return self._fetch_one(f"SELECT * FROM {table} WHERE id = ?", (unit_id,))

    def list_units(self, table: str, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
        _check_unit_table(table)
        if status:
            return self._fetch_all(
                f"SELECT * FROM {table} WHERE status = ? ORDER BY eligible_at, id", (status,)
            )
        return self._fetch_all(f"SELECT * FROM {table} ORDER BY eligible_at, id")

    def eligible_unit_ids(
        self,
        table: str,
        *,
        claimable: Iterable[str],
        now: datetime,
        stale_before: datetime,
        limit: int,
        extra_where: str = "",
    ) -> List[str]:
        """Units past their eligibility time that are unclaimed or hold an abandoned claim."""

        _check_unit_table(table)
        statuses = list(claimable)
        placeholders = ", ".join("?" for _ in statuses)
        query = (
            f"SELECT id FROM {table} "
            f"WHERE eligible_at <= ? "
            f"AND (status IN ({placeholders}) OR (status = 'claimed' AND claimed_at < ?))"
        )
        if extra_where:
            query += f" AND ({extra_where})"
        query += " ORDER BY eligible_at, id LIMIT ?"
        params: List[Any] = [to_iso(now), *statuses, to_iso(stale_before), limit]
        return [row["id"] for row in self._fetch_all(query, params)]

    def claim_unit(
        self,
        table: str,
        unit_id: str,
        *,
        claimable: Iterable[str],
        now: datetime,
        stale_before: datetime,
        token: str,
        extra_where: str = "",
    ) -> bool:
        """Atomically move an eligible unit into the claimed state.

        A single conditional UPDATE acts as compare-and-swap: of any number of
        concurrent callers, at most one sees ``rowcount == 1``.
        """

        _check_unit_table(table)
        statuses = list(claimable)
        placeholders = ", ".join("?" for _ in statuses)
        query = (
            f"UPDATE {table} SET "
            "prior_status = CASE WHEN status = 'claimed' THEN prior_status ELSE status END, "
            "status = 'claimed', claimed_at = ?, claim_token = ? "
            "WHERE id = ? AND eligible_at <= ? "
            f"AND (status IN ({placeholders}) OR (status = 'claimed' AND claimed_at < ?))"
        )
        if extra_where:
            query += f" AND ({extra_where})"
        params: List[Any] = [
            to_iso(now),
            token,
            unit_id,
            to_iso(now),
            *statuses,
            to_iso(stale_before),
        ]
        with closing(self._connect()) as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount == 1

    def release_claim(
        self, table: str, unit_id: str, token: str, *, error: Optional[str] = None
    ) -> bool:
        """Hand a claimed unit back to its previous status."""

        _check_unit_table(table)
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET status = COALESCE(prior_status, 'pending'), "
                "claimed_at = NULL, claim_token = NULL, prior_status = NULL, last_error = ? "
                "WHERE id = ? AND claim_token = ? AND status = 'claimed'",
                (error, unit_id, token),
            )
            conn.commit()
            return cursor.rowcount == 1

    def mark_failed(self, table: str, unit_id: str, token: str, error: str) -> bool:
        _check_unit_table(table)
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET status = 'failed', last_error = ? "
                "WHERE id = ? AND claim_token = ? AND status = 'claimed'",
                (error, unit_id, token),
            )
            conn.commit()
            return cursor.rowcount == 1

    def list_stale_claims(self, table: str, stale_before: datetime) -> List[Dict[str, Any]]:
        _check_unit_table(table)
        return self._fetch_all(
            f"SELECT id, claimed_at, prior_status FROM {table} "
            "WHERE status = 'claimed' AND claimed_at < ? ORDER BY claimed_at",
            (to_iso(stale_before),),
        )

    def reclaim_stale(self, table: str, stale_before: datetime) -> int:
        """Return abandoned claims to their prior status."""

        _check_unit_table(table)
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET status = COALESCE(prior_status, 'pending'), "
                "claimed_at = NULL, claim_token = NULL, prior_status = NULL, "
                "last_error = 'claim expired' "
                "WHERE status = 'claimed' AND claimed_at < ?",
                (to_iso(stale_before),),
            )
            conn.commit()
            return cursor.rowcount

    def commit_resolution(
        self,
        table: str,
        unit_id: str,
        *,
        claim_token: str,
        result: EffectResult,
        now: datetime,
        next_eligible_at: Optional[datetime] = None,
    ) -> None:
        """Apply every delta and the unit's completion in one transaction.

        Deltas are clamped by the database while they are applied. If the claim
        token no longer matches, nothing is written and :class:`ClaimLostError`
        is raised.
        """

        _check_unit_table(table)
        unit_updates = dict(result.unit_updates)
        unknown = set(unit_updates) - _UNIT_UPDATE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Cannot update {sorted(unknown)} on {table}")

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            for delta in result.deltas:
                self._apply_delta(conn, delta)
            for insert in result.inserts:
                if insert.table not in _INSERTABLE_TABLES:
                    raise ValueError(f"Inserts into {insert.table} are not allowed")
                columns = ", ".join(insert.values)
                placeholders = ", ".join("?" for _ in insert.values)
                conn.execute(
                    f"INSERT OR REPLACE INTO {insert.table} ({columns}) VALUES ({placeholders})",
                    tuple(insert.values.values()),
                )

            assignments = ["outcome_code = ?", "last_error = NULL"]
            params: List[Any] = [result.outcome_code]
            if next_eligible_at is not None:
                assignments.extend(
                    [
                        "status = 'pending'",
                        "eligible_at = ?",
                        "claimed_at = NULL",
                        "claim_token = NULL",
                        "prior_status = NULL",
                    ]
                )
                params.append(to_iso(next_eligible_at))
            else:
                assignments.extend(["status = 'completed'", "completed_at = ?"])
                params.append(to_iso(now))
            for column, value in unit_updates.items():
                assignments.append(f"{column} = ?")
                params.append(value)
            params.extend([unit_id, claim_token])
            cursor = conn.execute(
                f"UPDATE {table} SET {', '.join(assignments)} "
                "WHERE id = ? AND claim_token = ? AND status = 'claimed'",
                params,
            )
            if cursor.rowcount != 1:
                conn.rollback()
                raise ClaimLostError(f"Claim on {table}/{unit_id} was lost before completion")
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _apply_delta(conn: sqlite3.Connection, delta) -> None:
        allowed = _WRITABLE_COLUMNS.get(delta.table, frozenset())
        if delta.column not in allowed:
            raise ValueError(f"Column {delta.table}.{delta.column} is not writable")
        if delta.key_column not in _KEY_COLUMNS:
            raise ValueError(f"Invalid key column {delta.key_column}")
        if delta.amount is not None:
            expression = f"COALESCE({delta.column}, 0) + ?"
            params: List[Any] = [delta.amount]
            if delta.upper is not None:
                expression = f"MIN({expression}, ?)"
                params.append(delta.upper)
            if delta.lower is not None:
                expression = f"MAX({expression}, ?)"
                params.append(delta.lower)
        else:
            expression = "?"
            params = [delta.set_value]
        params.append(delta.key)
        cursor = conn.execute(
            f"UPDATE {delta.table} SET {delta.column} = {expression} "
            f"WHERE {delta.key_column} = ?",
            params,
        )
        if cursor.rowcount == 0:
            raise sqlite3.IntegrityError(
                f"No {delta.table} row with {delta.key_column} = {delta.key!r}"
            )

    # Lottery purchases ---------------------------------------------------
    def purchase_ticket(
        self,
        ticket_id: str,
        *,
        profile_id: str,
        draw_id: str,
        numbers: Sequence[int],
        bonus_number: int,
        price: int,
        now: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Debit the ticket price and store the ticket atomically.

        Returns ``None`` when the profile cannot afford it or the draw stopped
        accepting tickets between validation and purchase.
        """

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            draw = conn.execute(
                "SELECT eligible_at FROM lottery_draws WHERE id = ? AND status = 'scheduled' "
                "AND eligible_at > ?",
                (draw_id, to_iso(now)),
            ).fetchone()
            if draw is None:
                conn.rollback()
                return None
            cursor = conn.execute(
                "UPDATE profiles SET cash = cash - ? WHERE id = ? AND cash >= ?",
                (price, profile_id, price),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return None
            record = {
                "id": ticket_id,
                "profile_id": profile_id,
                "draw_id": draw_id,
                "numbers": json.dumps(sorted(numbers)),
                "bonus_number": bonus_number,
                "purchased_at": to_iso(now),
                "status": UnitStatus.PENDING.value,
                "eligible_at": draw["eligible_at"],
            }
            columns = ", ".join(record)
            placeholders = ", ".join("?" for _ in record)
            conn.execute(
                f"INSERT INTO lottery_tickets ({columns}) VALUES ({placeholders})",
                tuple(record.values()),
            )
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()
        return record

    # Side effects --------------------------------------------------------
    def record_side_effects(
        self,
        events: Iterable[EventLogEntry],
        notifications: Iterable[NotificationEntry],
    ) -> None:
        with closing(self._connect()) as conn:
            for event in events:
                conn.execute(
                    "INSERT INTO event_log "
                    "(domain, unit_id, event_type, outcome_code, profile_id, band_id, payload, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        event.domain,
                        event.unit_id,
                        event.event_type,
                        event.outcome_code,
                        event.profile_id,
                        event.band_id,
                        json.dumps(event.payload, default=str),
                        to_iso(event.created_at),
                    ),
                )
            for notification in notifications:
                conn.execute(
                    "INSERT INTO notifications (profile_id, category, title, message, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        notification.profile_id,
                        notification.category,
                        notification.title,
                        notification.message,
                        to_iso(notification.created_at),
                    ),
                )
            conn.commit()

    def list_events(
        self, domain: Optional[str] = None, unit_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM event_log"
        conditions: List[str] = []
        params: List[Any] = []
        if domain:
            conditions.append("domain = ?")
            params.append(domain)
        if unit_id:
            conditions.append("unit_id = ?")
            params.append(unit_id)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"
        rows = self._fetch_all(query, params)
        for row in rows:
            row["payload"] = json.loads(row["payload"])
        return rows

    def list_notifications(self, profile_id: str) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM notifications WHERE profile_id = ? ORDER BY id", (profile_id,)
        )

    def list_rows(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        if table not in _INSERTABLE_TABLES:
            raise ValueError(f"{table!r} cannot be listed")
        query = f"SELECT * FROM {table}"
        if filters:
            query += " WHERE " + " AND ".join(f"{column} = ?" for column in filters)
        query += " ORDER BY rowid"
        return self._fetch_all(query, tuple(filters.values()))

    # Job run ledger ------------------------------------------------------
    def start_job_run(
        self,
        job_name: str,
        *,
        triggered_by: Optional[str] = None,
        request_payload: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> int:
        started = now or datetime.now(timezone.utc)
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                "INSERT INTO job_runs (job_name, triggered_by, request_payload, status, started_at) "
                "VALUES (?, ?, ?, 'running', ?)",
                (
                    job_name,
                    triggered_by,
                    json.dumps(request_payload) if request_payload is not None else None,
                    to_iso(started),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def complete_job_run(
        self,
        run_id: int,
        *,
        duration_ms: float,
        processed_count: int,
        error_count: int,
        result_summary: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._finish_job_run(
            run_id,
            status="completed",
            duration_ms=duration_ms,
            processed_count=processed_count,
            error_count=error_count,
            result_summary=result_summary,
        )

    def fail_job_run(
        self,
        run_id: int,
        *,
        duration_ms: float,
        error: str,
        result_summary: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._finish_job_run(
            run_id,
            status="failed",
            duration_ms=duration_ms,
            processed_count=None,
            error_count=None,
            result_summary=result_summary,
            error_message=error,
        )

    def _finish_job_run(
        self,
        run_id: int,
        *,
        status: str,
        duration_ms: float,
        processed_count: Optional[int],
        error_count: Optional[int],
        result_summary: Optional[Dict[str, Any]],
        error_message: Optional[str] = None,
    ) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "UPDATE job_runs SET status = ?, finished_at = ?, duration_ms = ?, "
                "processed_count = ?, error_count = ?, result_summary = ?, error_message = ? "
                "WHERE id = ?",
                (
                    status,
                    to_iso(datetime.now(timezone.utc)),
                    duration_ms,
                    processed_count,
                    error_count,
                    json.dumps(result_summary, default=str) if result_summary is not None else None,
                    error_message,
                    run_id,
                ),
            )
            conn.commit()

    def list_job_runs(
        self, job_name: Optional[str] = None, limit: int = 20
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM job_runs"
        params: List[Any] = []
        if job_name:
            query += " WHERE job_name = ?"
            params.append(job_name)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = self._fetch_all(query, params)
        for row in rows:
            for key in ("request_payload", "result_summary"):
                if row.get(key):
                    row[key] = json.loads(row[key])
        return rows


__all__ = ["ResolutionState", "UNIT_TABLES", "from_iso", "to_iso"]
