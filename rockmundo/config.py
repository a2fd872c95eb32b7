"""Configuration loading utilities for the Rockmundo resolution engine."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"
DEFAULT_STATE_DB = Path("rockmundo.db")

_DEFAULT_TWAATER_BASELINE: Dict[str, Tuple[int, int]] = {
    "likes": (0, 12),
    "replies": (0, 4),
    "retwaats": (0, 3),
    "impressions": (20, 200),
}


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    engine_seed: int
    claim_ttl_minutes: float
    batch_limit: int
    database_path: Path
    telemetry_path: Path
    twaater_baseline: Dict[str, Tuple[int, int]]
    twaater_follower_engagement: float
    lottery_ticket_price: int
    lottery_number_count: int
    lottery_number_max: int
    lottery_bonus_max: int
    relationship_interval_hours: float
    relationship_grace_days: float
    relationship_daily_decay: float
    relationship_max_decay: float
    relationship_thresholds: Dict[str, int]
    chemistry_interval_days: float
    demo_base_threshold: float
    demo_reputation_weight: float
    demo_score_noise: float
    jam_gift_base_chance: float
    jam_gift_max_chance: float
    jam_gift_weekly_limit: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        engine_cfg = data.get("engine", {})
        storage_cfg = data.get("storage", {})
        twaater_cfg = data.get("twaater", {})
        lottery_cfg = data.get("lottery", {})
        relationship_cfg = data.get("relationships", {})
        chemistry_cfg = data.get("chemistry", {})
        demo_cfg = data.get("demo_review", {})
        jam_cfg = data.get("jam_sessions", {})

        baseline = dict(_DEFAULT_TWAATER_BASELINE)
        for metric, bounds in (twaater_cfg.get("baseline") or {}).items():
            low, high = int(bounds[0]), int(bounds[1])
            if low > high:
                raise ValueError(f"twaater baseline for {metric} has low > high")
            baseline[metric] = (low, high)

        number_count = int(lottery_cfg.get("number_count", 7))
        number_max = int(lottery_cfg.get("number_max", 49))
        if number_count > number_max:
            raise ValueError("lottery number_count cannot exceed number_max")

        gift_base = float(jam_cfg.get("gift_base_chance", 0.0075))
        gift_max = float(jam_cfg.get("gift_max_chance", 0.025))
        if not 0 <= gift_base <= gift_max <= 1:
            raise ValueError("jam gift chances must satisfy 0 <= base <= max <= 1")

        thresholds = relationship_cfg.get(
            "thresholds", {"close": 75, "friends": 50, "acquaintances": 25, "rivals": -25}
        )
        return Settings(
            engine_seed=int(engine_cfg.get("seed", 1987)),
            claim_ttl_minutes=float(engine_cfg.get("claim_ttl_minutes", 15)),
            batch_limit=int(engine_cfg.get("batch_limit", 200)),
            database_path=Path(storage_cfg.get("database", DEFAULT_STATE_DB)),
            telemetry_path=Path(storage_cfg.get("telemetry", "telemetry.db")),
            twaater_baseline=baseline,
            twaater_follower_engagement=float(twaater_cfg.get("follower_engagement", 0.05)),
            lottery_ticket_price=int(lottery_cfg.get("ticket_price", 10)),
            lottery_number_count=number_count,
            lottery_number_max=number_max,
            lottery_bonus_max=int(lottery_cfg.get("bonus_max", 10)),
            relationship_interval_hours=float(relationship_cfg.get("interval_hours", 24)),
            relationship_grace_days=float(relationship_cfg.get("grace_days", 7)),
            relationship_daily_decay=float(relationship_cfg.get("daily_decay", 1.5)),
            relationship_max_decay=float(relationship_cfg.get("max_decay", 10)),
            relationship_thresholds={k: int(v) for k, v in thresholds.items()},
            chemistry_interval_days=float(chemistry_cfg.get("interval_days", 7)),
            demo_base_threshold=float(demo_cfg.get("base_threshold", 30)),
            demo_reputation_weight=float(demo_cfg.get("reputation_weight", 0.3)),
            demo_score_noise=float(demo_cfg.get("score_noise", 20)),
            jam_gift_base_chance=gift_base,
            jam_gift_max_chance=gift_max,
            jam_gift_weekly_limit=int(jam_cfg.get("gift_weekly_limit", 1)),
        )


def _apply_env_overrides(settings: Settings) -> Settings:
    overrides: Dict[str, Any] = {}
    db_path = os.getenv("ROCKMUNDO_DB")
    if db_path:
        overrides["database_path"] = Path(db_path)
    telemetry_path = os.getenv("ROCKMUNDO_TELEMETRY_DB")
    if telemetry_path:
        overrides["telemetry_path"] = Path(telemetry_path)
    if not overrides:
        return settings
    return replace(settings, **overrides)


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.getenv("ROCKMUNDO_SETTINGS")
        self._path = path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        self._cache = _apply_env_overrides(Settings.from_dict(data))
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["DEFAULT_STATE_DB", "Settings", "SettingsLoader", "get_settings"]
