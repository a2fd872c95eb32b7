"""Outcome catalogs, weight rules and prize tables."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError
from .models import EffectKind, OutcomeDefinition, PrizeTier, WeightRule

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "catalogs.yaml"

# Effect names each domain's applicator knows how to handle.
DOMAIN_EFFECTS: Dict[str, FrozenSet[EffectKind]] = {
    "twaater": frozenset(
        {
            EffectKind.LIKES_MULT,
            EffectKind.REPLIES_MULT,
            EffectKind.RETWAATS_MULT,
            EffectKind.IMPRESSIONS_MULT,
            EffectKind.FOLLOWER_PCT,
            EffectKind.FAME_DELTA,
            EffectKind.CASH_DELTA,
        }
    ),
    "pr_activity": frozenset(
        {
            EffectKind.FAME_MULT,
            EffectKind.FANS_MULT,
            EffectKind.FAME_DELTA,
            EffectKind.FANS_DELTA,
            EffectKind.CASH_DELTA,
        }
    ),
    "relationship_decay": frozenset(
        {EffectKind.DECAY_MULT, EffectKind.AFFECTION_DELTA}
    ),
    "jam_session": frozenset({EffectKind.MOOD_DELTA, EffectKind.SYNERGY_DELTA}),
    # Rejections carry only a reason; the offer terms are computed, not drawn.
    "demo_review": frozenset(),
}


class _OutcomeEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1)
    group: str = Field(min_length=1)
    weight: float = Field(ge=0)
    description: str = ""
    effects: Dict[EffectKind, float] = Field(default_factory=dict)


class _RuleEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    group: str = Field(min_length=1)
    signal: str = Field(min_length=1)
    op: Literal["gt", "gte", "lt", "lte", "eq", "truthy", "falsy"]
    value: Any = None
    factor: float = Field(gt=0)

    @model_validator(mode="after")
    def _comparison_needs_value(self) -> "_RuleEntry":
        if self.op not in {"truthy", "falsy"} and self.value is None:
            raise ValueError(f"rule on {self.signal!r} with op {self.op!r} needs a value")
        return self


class _PrizeTierEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    matches: int = Field(ge=0)
    bonus: bool = False
    cash: int = Field(ge=0)
    xp: int = Field(ge=0)
    label: str = ""


class CatalogLoader:
    """Reads the catalog YAML once per loader instance.

    The service creates a fresh loader per invocation, so edits to the file are
    picked up by the next trigger without a restart.
    """

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.getenv("ROCKMUNDO_CATALOGS")
        self._path = path or (Path(env_path) if env_path else DEFAULT_CATALOG_PATH)
        self._data: Optional[Dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _raw(self) -> Dict[str, Any]:
        if self._data is None:
            if not self._path.exists():
                raise ConfigurationError(f"Catalog file not found: {self._path}")
            with self._path.open("r", encoding="utf-8") as handle:
                try:
                    data = yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ConfigurationError(f"Catalog file is not valid YAML: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigurationError("Catalog file must map domains to catalogs")
            self._data = data
        return self._data

    def _section(self, domain: str, key: str) -> List[Any]:
        domain_cfg = self._raw().get(domain)
        if not isinstance(domain_cfg, dict):
            raise ConfigurationError(f"No catalog configured for domain {domain!r}")
        entries = domain_cfg.get(key, [])
        if not isinstance(entries, list):
            raise ConfigurationError(f"{domain}.{key} must be a list")
        return entries

    def outcomes(self, domain: str) -> List[OutcomeDefinition]:
        entries = self._section(domain, "outcomes")
        if not entries:
            raise ConfigurationError(f"Catalog for domain {domain!r} is empty")
        allowed = DOMAIN_EFFECTS.get(domain, frozenset())
        outcomes: List[OutcomeDefinition] = []
        seen: set[str] = set()
        for index, raw in enumerate(entries):
            try:
                entry = _OutcomeEntry.model_validate(raw)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Malformed outcome #{index} in {domain!r} catalog: {exc}"
                ) from exc
            if entry.code in seen:
                raise ConfigurationError(f"Duplicate outcome code {entry.code!r} in {domain!r}")
            unsupported = set(entry.effects) - allowed
            if unsupported:
                names = ", ".join(sorted(kind.value for kind in unsupported))
                raise ConfigurationError(
                    f"Outcome {entry.code!r} in {domain!r} uses unsupported effects: {names}"
                )
            seen.add(entry.code)
            outcomes.append(
                OutcomeDefinition(
                    code=entry.code,
                    group=entry.group,
                    base_weight=entry.weight,
                    effects=dict(entry.effects),
                    description=entry.description,
                )
            )
        if not any(outcome.base_weight > 0 for outcome in outcomes):
            logger.warning("Catalog %s has no positive weight; selection will fall back", domain)
        return outcomes

    def rules(self, domain: str) -> List[WeightRule]:
        rules: List[WeightRule] = []
        for index, raw in enumerate(self._section(domain, "rules")):
            try:
                entry = _RuleEntry.model_validate(raw)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Malformed weight rule #{index} in {domain!r}: {exc}"
                ) from exc
            rules.append(
                WeightRule(
                    group=entry.group,
                    signal=entry.signal,
                    op=entry.op,
                    value=entry.value,
                    factor=entry.factor,
                )
            )
        return rules

    def prize_tiers(self, domain: str) -> List[PrizeTier]:
        entries = self._section(domain, "prize_tiers")
        if not entries:
            raise ConfigurationError(f"Prize table for domain {domain!r} is empty")
        tiers: List[PrizeTier] = []
        for index, raw in enumerate(entries):
            try:
                entry = _PrizeTierEntry.model_validate(raw)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Malformed prize tier #{index} in {domain!r}: {exc}"
                ) from exc
            tiers.append(
                PrizeTier(
                    matches=entry.matches,
                    bonus=entry.bonus,
                    cash=entry.cash,
                    xp=entry.xp,
                    label=entry.label,
                )
            )
        # Highest match count first, bonus-requiring tier first within a count.
        tiers.sort(key=lambda tier: (tier.matches, tier.bonus), reverse=True)
        keys = [(tier.matches, tier.bonus) for tier in tiers]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"Prize table for {domain!r} repeats a tier")
        for higher, lower in zip(tiers, tiers[1:]):
            if lower.cash > higher.cash or lower.xp > higher.xp:
                raise ConfigurationError(
                    f"Prize tier {lower.code} in {domain!r} pays more than {higher.code}"
                )
        return tiers


def load_catalog(domain: str, loader: CatalogLoader | None = None) -> List[OutcomeDefinition]:
    """Return the validated outcome catalog for ``domain``."""

    return (loader or CatalogLoader()).outcomes(domain)


def load_weight_rules(domain: str, loader: CatalogLoader | None = None) -> List[WeightRule]:
    return (loader or CatalogLoader()).rules(domain)


def load_prize_tiers(domain: str, loader: CatalogLoader | None = None) -> List[PrizeTier]:
    return (loader or CatalogLoader()).prize_tiers(domain)


__all__ = [
    "CatalogLoader",
    "DEFAULT_CATALOG_PATH",
    "DOMAIN_EFFECTS",
    "load_catalog",
    "load_prize_tiers",
    "load_weight_rules",
]
