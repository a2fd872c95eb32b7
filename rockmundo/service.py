"""High-level resolution service: the handler behind every trigger."""
from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .catalog import CatalogLoader
from .config import Settings, get_settings
from .domains import RESOLVERS, DomainResolver, build_resolver
from .domains.lottery import quick_pick, validate_ticket
from .effects import EffectApplicator
from .emitter import SideEffectEmitter
from .errors import (
    ClaimLostError,
    ConfigurationError,
    DrawClosed,
    InsufficientFunds,
    InvalidTicket,
    UnitDataError,
    UnknownDomain,
)
from .guard import CompletionGuard
from .models import EffectResult, ResolutionSummary, UnitResult, UnitStatus
from .rng import DeterministicRNG
from .state import ResolutionState, from_iso
from .telemetry import TelemetryCollector, track_duration

logger = logging.getLogger(__name__)

# Columns whose deltas are reported to telemetry as economy movements.
_ECONOMY_COLUMNS = {
    ("profiles", "cash"): "cash",
    ("profiles", "fame"): "fame",
    ("profiles", "experience"): "experience",
    ("bands", "fame"): "fame",
    ("bands", "band_balance"): "cash",
}


def _as_utc(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class ResolutionService:
    """Runs claim, select, apply and emit for every eligible unit of a domain.

    One failing unit never aborts the batch: its error is logged with the
    domain, unit and stage and reported in the summary. Configuration errors
    are the exception and abort the whole invocation.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        settings: Optional[Settings] = None,
        catalog_path: Optional[Path] = None,
        telemetry: Optional[TelemetryCollector] = None,
        state: Optional[ResolutionState] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.state = state or ResolutionState(db_path or self.settings.database_path)
        self._catalog_path = catalog_path
        self._telemetry = telemetry or TelemetryCollector(self.settings.telemetry_path)
        self._applicator = EffectApplicator(self.state)
        self._emitter = SideEffectEmitter(self.state, self._telemetry)

    @property
    def telemetry(self) -> TelemetryCollector:
        return self._telemetry

    @property
    def domains(self) -> List[str]:
        return sorted(RESOLVERS)

    @property
    def claim_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.claim_ttl_minutes)

    def _resolver(self, domain: str) -> DomainResolver:
        if domain not in RESOLVERS:
            raise UnknownDomain(domain)
        # Catalogs are re-read for every invocation.
        catalogs = CatalogLoader(self._catalog_path)
        return build_resolver(domain, self.state, self.settings, catalogs)

    def _guard(self, resolver: DomainResolver) -> CompletionGuard:
        return CompletionGuard(
            self.state,
            table=resolver.table,
            claimable=resolver.claimable,
            claim_ttl=self.claim_ttl,
            extra_where=resolver.eligibility_clause,
        )

    # Resolution ----------------------------------------------------------
    def resolve(
        self,
        domain: str,
        unit_id: Optional[str] = None,
        now: Optional[datetime] = None,
        triggered_by: Optional[str] = None,
    ) -> ResolutionSummary:
        """Resolve one unit, or every eligible unit when ``unit_id`` is omitted."""

        now = _as_utc(now)
        resolver = self._resolver(domain)
        started = time.perf_counter()
        run_id = self.state.start_job_run(
            f"resolve-{domain}",
            triggered_by=triggered_by,
            request_payload={"domain": domain, "unitId": unit_id},
            now=now,
        )
        summary = ResolutionSummary(domain=domain, run_id=run_id)
        try:
            with track_duration(
                "resolve", {"domain": domain}, telemetry=self._telemetry
            ):
                resolver.prepare()
                guard = self._guard(resolver)
                if unit_id is None:
                    unit_ids = resolver.discover(
                        now, guard.stale_cutoff(now), self.settings.batch_limit
                    )
                else:
                    unit_ids = [unit_id]
                for current_id in unit_ids:
                    summary.results.append(self._resolve_unit(resolver, guard, current_id, now))
        except (ConfigurationError, sqlite3.Error) as exc:
            logger.error("Resolution run %s for %s aborted: %s", run_id, domain, exc)
            self._record_failed_run(run_id, started, exc, summary)
            raise

        self.state.complete_job_run(
            run_id,
            duration_ms=(time.perf_counter() - started) * 1000,
            processed_count=summary.processed,
            error_count=len(summary.failures),
            result_summary={
                "completed": summary.completed,
                "skipped": summary.skipped,
                "failed": len(summary.failures),
            },
        )
        logger.info(
            "Resolved %s: %d processed, %d completed, %d skipped, %d failed",
            domain,
            summary.processed,
            summary.completed,
            summary.skipped,
            len(summary.failures),
        )
        return summary

    def _record_failed_run(
        self, run_id: int, started: float, exc: Exception, summary: ResolutionSummary
    ) -> None:
        try:
            self.state.fail_job_run(
                run_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=str(exc),
                result_summary={"processed": summary.processed},
            )
        except sqlite3.Error:
            logger.exception("Could not record failure of job run %s", run_id)

    def _resolve_unit(
        self,
        resolver: DomainResolver,
        guard: CompletionGuard,
        unit_id: str,
        now: datetime,
    ) -> UnitResult:
        domain = resolver.name
        try:
            claim = guard.try_begin_completion(unit_id, now)
        except Exception as exc:
            logger.exception("Failed to claim %s/%s", domain, unit_id)
            return self._failed(domain, unit_id, "claim", exc)
        if not claim.allowed:
            reason = claim.reason.value if claim.reason else None
            logger.debug("Skipping %s/%s: %s", domain, unit_id, reason)
            self._telemetry.track_resolution(domain, "skipped", reason=reason)
            return UnitResult(unit_id=unit_id, status="skipped", reason=reason)

        token = claim.token
        assert token is not None
        stage = "load"
        try:
            unit = resolver.load_unit(unit_id)
            stage = "select"
            context = resolver.build_context(unit, now)
            rng = DeterministicRNG.for_unit(
                self.settings.engine_seed, domain, unit.id, unit.eligible_at
            )
            outcome = resolver.select(unit, context, rng)
            baseline = resolver.baseline(unit, context, rng)
            stage = "apply"
            result = resolver.compute_effects(unit, context, outcome, baseline, now)
            self._applicator.apply(
                unit,
                result,
                table=resolver.table,
                claim_token=token,
                now=now,
                next_eligible_at=resolver.next_eligible_at(unit, now),
            )
        except ClaimLostError as exc:
            # Someone else owns the unit now; leave it alone.
            logger.warning("Lost claim on %s/%s: %s", domain, unit_id, exc)
            return self._failed(domain, unit_id, stage, exc)
        except UnitDataError as exc:
            logger.exception("Unresolvable data for %s/%s at %s", domain, unit_id, stage)
            guard.fail(unit_id, token, str(exc))
            return self._failed(domain, unit_id, stage, exc)
        except ConfigurationError:
            guard.release(unit_id, token, error="configuration error")
            raise
        except Exception as exc:
            logger.exception("Failed to resolve %s/%s at %s", domain, unit_id, stage)
            try:
                guard.release(unit_id, token, error=str(exc))
            except sqlite3.Error:
                logger.exception("Could not release claim on %s/%s", domain, unit_id)
            return self._failed(domain, unit_id, stage, exc)

        emit_failure = self._emitter.emit(unit, result)
        self._track_completion(domain, result)
        return UnitResult(
            unit_id=unit_id,
            status="completed",
            outcome_code=result.outcome_code,
            summary=result.summary,
            emit_error=str(emit_failure) if emit_failure else None,
        )

    def _failed(self, domain: str, unit_id: str, stage: str, exc: Exception) -> UnitResult:
        self._telemetry.track_resolution(domain, "failed", reason=type(exc).__name__)
        self._telemetry.track_error(
            type(exc).__name__, domain=domain, stage=stage, error_details=str(exc)
        )
        return UnitResult(
            unit_id=unit_id,
            status="failed",
            stage=stage,
            error=f"{type(exc).__name__}: {exc}",
        )

    def _track_completion(self, domain: str, result: EffectResult) -> None:
        self._telemetry.track_resolution(domain, "completed", outcome_code=result.outcome_code)
        for delta in result.deltas:
            currency = _ECONOMY_COLUMNS.get((delta.table, delta.column))
            if currency and delta.amount:
                self._telemetry.track_economy_balance(currency, delta.amount, domain)

    # Claim maintenance ---------------------------------------------------
    def stale_claims(
        self, domain: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        now = _as_utc(now)
        cutoff = now - self.claim_ttl
        domains = [domain] if domain else self.domains
        report: Dict[str, List[Dict[str, Any]]] = {}
        for name in domains:
            table = self._resolver(name).table
            report[name] = self.state.list_stale_claims(table, cutoff)
        return report

    def reclaim_stale(
        self, domain: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Return abandoned claims to their prior status so the next run picks them up."""

        now = _as_utc(now)
        domains = [domain] if domain else self.domains
        counts: Dict[str, int] = {}
        for name in domains:
            counts[name] = self._guard(self._resolver(name)).reclaim_stale(now)
        if any(counts.values()):
            self._telemetry.track_system_event(
                "stale_claims_reclaimed", source="service", reason=str(counts)
            )
        return counts

    # Lottery purchases ---------------------------------------------------
    def buy_ticket(
        self,
        profile_id: str,
        draw_id: str,
        numbers: Optional[Sequence[int]] = None,
        bonus: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Validate and purchase a ticket; omitted numbers are quick-picked."""

        now = _as_utc(now)
        draw = self.state.get_unit("lottery_draws", draw_id)
        if draw is None:
            raise DrawClosed(f"Draw {draw_id} does not exist")
        draw_at = from_iso(draw["eligible_at"])
        if draw["status"] != UnitStatus.SCHEDULED.value or draw_at is None or draw_at <= now:
            raise DrawClosed(f"Draw {draw_id} is no longer accepting tickets")
        profile = self.state.get_profile(profile_id)
        if profile is None:
            raise InvalidTicket(f"Unknown profile {profile_id}")

        ticket_id = uuid.uuid4().hex
        if numbers is None or bonus is None:
            rng = DeterministicRNG.for_unit(self.settings.engine_seed, "quick_pick", ticket_id, now)
            picked_numbers, picked_bonus = quick_pick(rng, self.settings)
            numbers = picked_numbers if numbers is None else numbers
            bonus = picked_bonus if bonus is None else bonus
        numbers, bonus = validate_ticket(numbers, bonus, self.settings)

        price = self.settings.lottery_ticket_price
        if profile["cash"] < price:
            raise InsufficientFunds(f"Ticket costs {price}, profile has {profile['cash']}")
        record = self.state.purchase_ticket(
            ticket_id,
            profile_id=profile_id,
            draw_id=draw_id,
            numbers=numbers,
            bonus_number=bonus,
            price=price,
            now=now,
        )
        if record is None:
            # Lost a race between validation and the conditional debit.
            refreshed = self.state.get_profile(profile_id)
            if refreshed is None or refreshed["cash"] < price:
                raise InsufficientFunds(f"Ticket costs {price}")
            raise DrawClosed(f"Draw {draw_id} closed during purchase")

        self._telemetry.track_economy_balance("cash", -price, "lottery_ticket")
        logger.info("Profile %s bought ticket %s for draw %s", profile_id, ticket_id, draw_id)
        return {
            "ticketId": ticket_id,
            "profileId": profile_id,
            "drawId": draw_id,
            "numbers": numbers,
            "bonusNumber": bonus,
            "price": price,
            "purchasedAt": record["purchased_at"],
        }

    def health(self) -> Dict[str, Any]:
        return {
            "database": "ok" if self.state.ping() else "unreachable",
            "domains": self.domains,
        }


__all__ = ["ResolutionService"]
