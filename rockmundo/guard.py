"""At-most-once completion of resolution units."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import ClaimResult, SkipReason, UnitStatus
from .state import ResolutionState, from_iso

logger = logging.getLogger(__name__)


class CompletionGuard:
    """Claims units through a conditional update so only one invocation proceeds.

    A claim older than ``claim_ttl`` is considered abandoned (the invocation that
    took it crashed or timed out) and may be taken over by the next trigger.
    """

    def __init__(
        self,
        state: ResolutionState,
        *,
        table: str,
        claimable: Iterable[UnitStatus],
        claim_ttl: timedelta,
        extra_where: str = "",
    ) -> None:
        self._state = state
        self._table = table
        self._claimable = [status.value for status in claimable]
        self._claim_ttl = claim_ttl
        self._extra_where = extra_where

    @property
    def table(self) -> str:
        return self._table

    @property
    def claimable(self) -> list[str]:
        return list(self._claimable)

    def stale_cutoff(self, now: datetime) -> datetime:
        return now - self._claim_ttl

    def try_begin_completion(self, unit_id: str, now: datetime) -> ClaimResult:
        token = uuid.uuid4().hex
        claimed = self._state.claim_unit(
            self._table,
            unit_id,
            claimable=self._claimable,
            now=now,
            stale_before=self.stale_cutoff(now),
            token=token,
            extra_where=self._extra_where,
        )
        if claimed:
            return ClaimResult(allowed=True, token=token, claimed_at=now)
        reason = self._refusal_reason(unit_id, now)
        logger.debug("Claim on %s/%s refused: %s", self._table, unit_id, reason.value)
        return ClaimResult.refused(reason)

    def _refusal_reason(self, unit_id: str, now: datetime) -> SkipReason:
        row = self._state.get_unit(self._table, unit_id)
        if row is None:
            return SkipReason.UNIT_NOT_FOUND
        status = row["status"]
        if status == UnitStatus.COMPLETED.value:
            return SkipReason.ALREADY_COMPLETED
        if status == UnitStatus.FAILED.value:
            return SkipReason.FAILED
        if status == UnitStatus.CLAIMED.value:
            claimed_at: Optional[datetime] = from_iso(row.get("claimed_at"))
            if claimed_at is not None and claimed_at >= self.stale_cutoff(now):
                return SkipReason.CLAIM_IN_PROGRESS
        # Either the eligibility time is in the future or a domain precondition
        # (such as the lottery draw having happened) is not met yet.
        return SkipReason.NOT_YET_ELIGIBLE

    def release(self, unit_id: str, token: str, *, error: Optional[str] = None) -> bool:
        released = self._state.release_claim(self._table, unit_id, token, error=error)
        if not released:
            logger.warning("Claim on %s/%s could not be released", self._table, unit_id)
        return released

    def fail(self, unit_id: str, token: str, error: str) -> bool:
        return self._state.mark_failed(self._table, unit_id, token, error)

    def reclaim_stale(self, now: datetime) -> int:
        count = self._state.reclaim_stale(self._table, self.stale_cutoff(now))
        if count:
            logger.info("Returned %d abandoned claims on %s", count, self._table)
        return count


__all__ = ["CompletionGuard"]
