"""Exception hierarchy for outcome resolution."""
from __future__ import annotations

from typing import Optional


class ResolutionError(RuntimeError):
    """Base class for resolution engine errors."""


class ConfigurationError(ResolutionError):
    """Raised when a catalog, prize table or setting is missing or malformed.

    Fatal for the whole invocation; retrying without an operator fix is pointless.
    """


class UnknownDomain(ResolutionError):
    """Raised when a trigger names a domain with no registered resolver."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Unknown resolution domain: {domain}")
        self.domain = domain


class UnitNotFound(ResolutionError):
    """Raised when a unit id does not exist in the domain table."""


class UnitDataError(ResolutionError):
    """Raised when a unit's stored data cannot be resolved (missing owner, bad payload)."""


class ClaimLostError(ResolutionError):
    """Raised when completion finds the claim token no longer matches."""


class PartialApplicationFailure(ResolutionError):
    """Raised when the multi-table write for a unit failed.

    The write runs in a single transaction, so ``rolled_back`` is ``True`` unless
    the rollback itself failed. The unit is never marked completed in that case.
    """

    def __init__(self, message: str, *, rolled_back: bool = True) -> None:
        super().__init__(message)
        self.rolled_back = rolled_back


class EmitFailure(ResolutionError):
    """Side-effect log write failed after effects were committed."""

    def __init__(self, message: str, *, unit_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.unit_id = unit_id


class PurchaseError(ResolutionError):
    """Base class for synchronous, user-initiated precondition failures."""

    status_code = 400


class InvalidTicket(PurchaseError):
    """Ticket numbers are malformed."""

    status_code = 400


class InsufficientFunds(PurchaseError):
    """The profile cannot afford the purchase."""

    status_code = 402


class DrawClosed(PurchaseError):
    """The draw is no longer accepting tickets."""

    status_code = 409


__all__ = [
    "ClaimLostError",
    "ConfigurationError",
    "DrawClosed",
    "EmitFailure",
    "InsufficientFunds",
    "InvalidTicket",
    "PartialApplicationFailure",
    "PurchaseError",
    "ResolutionError",
    "UnitDataError",
    "UnitNotFound",
    "UnknownDomain",
]
