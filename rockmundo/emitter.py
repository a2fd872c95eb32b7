"""Append-only event and notification records for resolved units."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from .errors import EmitFailure
from .models import EffectResult, ResolutionUnit
from .state import ResolutionState
from .telemetry import TelemetryCollector

logger = logging.getLogger(__name__)


class SideEffectEmitter:
    """Writes UI-facing records after a unit's effects are committed.

    Emission runs in its own transaction. A failure here is reported but never
    raised, since rolling back the already committed effects is not an option.
    """

    def __init__(
        self,
        state: ResolutionState,
        telemetry: Optional[TelemetryCollector] = None,
    ) -> None:
        self._state = state
        self._telemetry = telemetry

    def emit(self, unit: ResolutionUnit, result: EffectResult) -> Optional[EmitFailure]:
        # Every event cites the outcome code that was persisted on the unit.
        events = [replace(event, outcome_code=result.outcome_code) for event in result.events]
        if not events and not result.notifications:
            return None
        try:
            self._state.record_side_effects(events, result.notifications)
        except Exception as exc:
            logger.exception(
                "Failed to emit %d events for %s/%s", len(events), unit.domain, unit.id
            )
            if self._telemetry is not None:
                self._telemetry.track_error(
                    "EmitFailure", domain=unit.domain, stage="emit", error_details=str(exc)
                )
            return EmitFailure(str(exc), unit_id=unit.id)
        return None


__all__ = ["SideEffectEmitter"]
