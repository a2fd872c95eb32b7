"""Registered resolution domains."""

from __future__ import annotations

from typing import Dict, Type

from ..catalog import CatalogLoader
from ..config import Settings
from ..errors import UnknownDomain
from ..state import ResolutionState
from .base import DomainResolver, WeightedDomainResolver
from .chemistry import ChemistryDriftResolver
from .demo_review import DemoReviewResolver
from .jam_session import JamSessionResolver
from .lottery import LotteryDrawResolver, LotteryTicketResolver
from .pr_activity import PRActivityResolver
from .relationships import RelationshipDecayResolver
from .travel import TravelResolver
from .twaater import TwaaterResolver

RESOLVERS: Dict[str, Type[DomainResolver]] = {
    resolver.name: resolver
    for resolver in (
        TwaaterResolver,
        LotteryDrawResolver,
        LotteryTicketResolver,
        TravelResolver,
        PRActivityResolver,
        RelationshipDecayResolver,
        ChemistryDriftResolver,
        DemoReviewResolver,
        JamSessionResolver,
    )
}


def build_resolver(
    domain: str,
    state: ResolutionState,
    settings: Settings,
    catalogs: CatalogLoader,
) -> DomainResolver:
    try:
        resolver_cls = RESOLVERS[domain]
    except KeyError:
        raise UnknownDomain(domain) from None
    return resolver_cls(state, settings, catalogs)


__all__ = [
    "ChemistryDriftResolver",
    "DemoReviewResolver",
    "DomainResolver",
    "JamSessionResolver",
    "LotteryDrawResolver",
    "LotteryTicketResolver",
    "PRActivityResolver",
    "RESOLVERS",
    "RelationshipDecayResolver",
    "TravelResolver",
    "TwaaterResolver",
    "WeightedDomainResolver",
    "build_resolver",
]
