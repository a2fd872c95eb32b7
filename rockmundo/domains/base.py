"""Shared shape of a resolution domain."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..catalog import CatalogLoader
from ..config import Settings
from ..errors import UnitDataError, UnitNotFound
from ..models import (
    EffectResult,
    OutcomeDefinition,
    ResolutionContext,
    ResolutionUnit,
    UnitStatus,
)
from ..rng import DeterministicRNG
from ..scoring import ContextScorer
from ..selection import WeightedSelector
from ..state import ResolutionState, from_iso

logger = logging.getLogger(__name__)


class DomainResolver:
    """One kind of resolution: where its units live and how they are resolved.

    Subclasses supply the domain-specific steps; the service drives them in the
    fixed order claim, select, apply, emit.
    """

    name: str = ""
    table: str = ""
    claimable: Tuple[UnitStatus, ...] = (UnitStatus.PENDING,)
    # Extra SQL predicate a unit must satisfy to be claimed or discovered.
    eligibility_clause: str = ""

    def __init__(
        self,
        state: ResolutionState,
        settings: Settings,
        catalogs: CatalogLoader,
    ) -> None:
        self.state = state
        self.settings = settings
        self.catalogs = catalogs

    @property
    def interval(self) -> Optional[timedelta]:
        """Recurrence period for units that are resolved again every period."""

        return None

    def prepare(self) -> None:
        """Load per-invocation configuration; errors here abort the whole run."""

    def discover(self, now: datetime, stale_before: datetime, limit: int) -> List[str]:
        return self.state.eligible_unit_ids(
            self.table,
            claimable=[status.value for status in self.claimable],
            now=now,
            stale_before=stale_before,
            limit=limit,
            extra_where=self.eligibility_clause,
        )

    def load_unit(self, unit_id: str) -> ResolutionUnit:
        row = self.state.get_unit(self.table, unit_id)
        if row is None:
            raise UnitNotFound(f"{self.table}/{unit_id} does not exist")
        return ResolutionUnit(
            domain=self.name,
            id=row["id"],
            status=UnitStatus(row["status"]),
            eligible_at=from_iso(row["eligible_at"]),
            owner_id=self.owner_of(row),
            data=row,
            claimed_at=from_iso(row.get("claimed_at")),
            claim_token=row.get("claim_token"),
            prior_status=row.get("prior_status"),
            completed_at=from_iso(row.get("completed_at")),
            outcome_code=row.get("outcome_code"),
        )

    def owner_of(self, row: Dict[str, Any]) -> Optional[str]:
        return row.get("profile_id")

    def build_context(self, unit: ResolutionUnit, now: datetime) -> ResolutionContext:
        return ResolutionContext(domain=self.name, unit_id=unit.id)

    def select(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        rng: DeterministicRNG,
    ) -> Optional[OutcomeDefinition]:
        return None

    def baseline(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        rng: DeterministicRNG,
    ) -> Dict[str, float]:
        return {}

    def compute_effects(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        outcome: Optional[OutcomeDefinition],
        baseline: Dict[str, float],
        now: datetime,
    ) -> EffectResult:
        raise NotImplementedError

    def next_eligible_at(self, unit: ResolutionUnit, now: datetime) -> Optional[datetime]:
        interval = self.interval
        if interval is None:
            return None
        return now + interval

    # Helpers -----------------------------------------------------------
    def require_profile(self, profile_id: Optional[str]) -> Dict[str, Any]:
        profile = self.state.get_profile(profile_id) if profile_id else None
        if profile is None:
            raise UnitDataError(f"{self.name}: profile {profile_id!r} not found")
        return profile

    @staticmethod
    def parse_json(value: Any, *, what: str) -> Any:
        if value is None or isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError) as exc:
            raise UnitDataError(f"Malformed {what}: {exc}") from exc


class WeightedDomainResolver(DomainResolver):
    """A domain whose outcome is a weighted draw over a configured catalog."""

    def prepare(self) -> None:
        self.outcomes = self.catalogs.outcomes(self.name)
        self.scorer = ContextScorer(self.catalogs.rules(self.name))
        self.selector = WeightedSelector(self.outcomes)

    def select(
        self,
        unit: ResolutionUnit,
        context: ResolutionContext,
        rng: DeterministicRNG,
    ) -> Optional[OutcomeDefinition]:
        adjustments = self.scorer.score(context)
        context.related["adjustments"] = adjustments
        outcome = self.selector.select(rng, adjustments)
        logger.debug(
            "%s/%s drew %s with %d adjustments",
            self.name,
            unit.id,
            outcome.code,
            len(adjustments),
        )
        return outcome


__all__ = ["DomainResolver", "WeightedDomainResolver"]
