"""Core data models for the Rockmundo resolution engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class UnitStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"


class SkipReason(str, Enum):
    """Why the completion guard refused a claim."""

    ALREADY_COMPLETED = "AlreadyCompleted"
    NOT_YET_ELIGIBLE = "NotYetEligible"
    CLAIM_IN_PROGRESS = "ClaimInProgress"
    UNIT_NOT_FOUND = "UnitNotFound"
    FAILED = "Failed"


class EffectKind(str, Enum):
    """Closed set of effect names an outcome may carry."""

    LIKES_MULT = "likes_mult"
    REPLIES_MULT = "replies_mult"
    RETWAATS_MULT = "retwaats_mult"
    IMPRESSIONS_MULT = "impressions_mult"
    FAME_MULT = "fame_mult"
    FANS_MULT = "fans_mult"
    DECAY_MULT = "decay_mult"
    FOLLOWER_PCT = "follower_pct"
    FAME_DELTA = "fame_delta"
    FANS_DELTA = "fans_delta"
    CASH_DELTA = "cash_delta"
    XP_DELTA = "xp_delta"
    AFFECTION_DELTA = "affection_delta"
    MOOD_DELTA = "mood_delta"
    SYNERGY_DELTA = "synergy_delta"

    @property
    def multiplicative(self) -> bool:
        return self.value.endswith("_mult")


@dataclass(frozen=True)
class OutcomeDefinition:
    """One possible labelled result of a resolution."""

    code: str
    group: str
    base_weight: float
    effects: Dict[EffectKind, float] = field(default_factory=dict)
    description: str = ""

    def effect(self, kind: EffectKind, default: float) -> float:
        return float(self.effects.get(kind, default))

    def multiplier(self, kind: EffectKind) -> float:
        return self.effect(kind, 1.0)

    def addition(self, kind: EffectKind) -> float:
        return self.effect(kind, 0.0)


@dataclass(frozen=True)
class WeightRule:
    """Table-driven contextual boost for one outcome group."""

    group: str
    signal: str
    op: str
    factor: float
    value: Any = None

    @property
    def label(self) -> str:
        if self.op in {"truthy", "falsy"}:
            return f"{self.signal}:{self.op}"
        return f"{self.signal} {self.op} {self.value}"

    def matches(self, signals: Dict[str, Any]) -> bool:
        if self.signal not in signals:
            return False
        observed = signals[self.signal]
        if self.op == "truthy":
            return bool(observed)
        if self.op == "falsy":
            return not observed
        if observed is None:
            return False
        if self.op == "eq":
            return observed == self.value
        if self.op == "gt":
            return observed > self.value
        if self.op == "gte":
            return observed >= self.value
        if self.op == "lt":
            return observed < self.value
        if self.op == "lte":
            return observed <= self.value
        return False


@dataclass(frozen=True)
class WeightAdjustment:
    group: str
    factor: float
    rule: Optional[str] = None


@dataclass(frozen=True)
class PrizeTier:
    """Deterministic lottery-style outcome keyed by a match count."""

    matches: int
    bonus: bool
    cash: int
    xp: int
    label: str = ""

    @property
    def code(self) -> str:
        return self.label or f"match_{self.matches}{'_bonus' if self.bonus else ''}"

    def satisfied_by(self, matches: int, bonus_matched: bool) -> bool:
        if matches < self.matches:
            return False
        return bonus_matched or not self.bonus


@dataclass
class ResolutionContext:
    """Per-invocation snapshot of the signals used to bias weights."""

    domain: str
    unit_id: str
    signals: Dict[str, Any] = field(default_factory=dict)
    related: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResolutionUnit:
    """The entity whose lifecycle transition is being resolved."""

    domain: str
    id: str
    status: UnitStatus
    eligible_at: datetime
    owner_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    claimed_at: Optional[datetime] = None
    claim_token: Optional[str] = None
    prior_status: Optional[str] = None
    completed_at: Optional[datetime] = None
    outcome_code: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == UnitStatus.COMPLETED


@dataclass(frozen=True)
class FieldDelta:
    """A single column change. Either ``amount`` (added) or ``set_value`` (assigned)."""

    table: str
    key: Any
    column: str
    amount: Optional[float] = None
    set_value: Any = None
    lower: Optional[float] = None
    upper: Optional[float] = None
    key_column: str = "id"


@dataclass(frozen=True)
class RowInsert:
    table: str
    values: Dict[str, Any]


@dataclass(frozen=True)
class EventLogEntry:
    """Immutable, append-only record of what happened."""

    domain: str
    unit_id: str
    event_type: str
    outcome_code: Optional[str]
    payload: Dict[str, Any]
    created_at: datetime
    profile_id: Optional[str] = None
    band_id: Optional[str] = None


@dataclass(frozen=True)
class NotificationEntry:
    profile_id: str
    category: str
    title: str
    message: str
    created_at: datetime


@dataclass
class EffectResult:
    """Field deltas computed for one unit, applied atomically."""

    unit_id: str
    outcome_code: Optional[str]
    deltas: List[FieldDelta] = field(default_factory=list)
    inserts: List[RowInsert] = field(default_factory=list)
    unit_updates: Dict[str, Any] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)
    events: List[EventLogEntry] = field(default_factory=list)
    notifications: List[NotificationEntry] = field(default_factory=list)

    def delta_for(self, table: str, column: str) -> Optional[FieldDelta]:
        for delta in self.deltas:
            if delta.table == table and delta.column == column:
                return delta
        return None


@dataclass
class ClaimResult:
    allowed: bool
    reason: Optional[SkipReason] = None
    token: Optional[str] = None
    claimed_at: Optional[datetime] = None

    @classmethod
    def refused(cls, reason: SkipReason) -> "ClaimResult":
        return cls(allowed=False, reason=reason)


@dataclass
class UnitResult:
    """Outcome of one unit inside a resolution invocation."""

    unit_id: str
    status: str
    outcome_code: Optional[str] = None
    reason: Optional[str] = None
    stage: Optional[str] = None
    error: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)
    emit_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"unitId": self.unit_id, "status": self.status}
        if self.outcome_code is not None:
            payload["outcome"] = self.outcome_code
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.stage is not None:
            payload["stage"] = self.stage
        if self.error is not None:
            payload["error"] = self.error
        if self.summary:
            payload["summary"] = self.summary
        if self.emit_error is not None:
            payload["emitError"] = self.emit_error
        return payload


@dataclass
class ResolutionSummary:
    domain: str
    results: List[UnitResult] = field(default_factory=list)
    run_id: Optional[int] = None

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def completed(self) -> int:
        return sum(1 for result in self.results if result.status == "completed")

    @property
    def skipped(self) -> int:
        return sum(1 for result in self.results if result.status == "skipped")

    @property
    def failures(self) -> List[UnitResult]:
        return [result for result in self.results if result.status == "failed"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "processed": self.processed,
            "completed": self.completed,
            "skipped": self.skipped,
            "failed": len(self.failures),
            "results": [result.to_dict() for result in self.results],
            "failures": [result.to_dict() for result in self.failures],
            "runId": self.run_id,
        }


__all__ = [
    "ClaimResult",
    "EffectKind",
    "EffectResult",
    "EventLogEntry",
    "FieldDelta",
    "NotificationEntry",
    "OutcomeDefinition",
    "PrizeTier",
    "ResolutionContext",
    "ResolutionSummary",
    "ResolutionUnit",
    "RowInsert",
    "SkipReason",
    "UnitResult",
    "UnitStatus",
    "WeightAdjustment",
    "WeightRule",
]
