"""Monte Carlo check of a domain's outcome distribution for given signals."""

from __future__ import annotations

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..catalog import CatalogLoader
from ..models import ResolutionContext
from ..rng import DeterministicRNG
from ..scoring import ContextScorer
from ..selection import WeightedSelector

WEIGHTED_DOMAINS = ("twaater", "pr_activity", "relationship_decay", "demo_review", "jam_session")


def parse_signal(raw: str) -> tuple[str, Any]:
    """Parse ``name=value`` into a typed signal (bool, int, float or str)."""

    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"Signal must look like name=value: {raw}")
    name, value = raw.split("=", 1)
    lowered = value.lower()
    if lowered in {"true", "yes"}:
        return name, True
    if lowered in {"false", "no"}:
        return name, False
    for cast in (int, float):
        try:
            return name, cast(value)
        except ValueError:
            continue
    return name, value


def simulate(
    domain: str,
    signals: Dict[str, Any],
    draws: int,
    *,
    seed: int = 1987,
    catalog_path: Optional[Path] = None,
) -> Dict[str, Any]:
    loader = CatalogLoader(catalog_path)
    selector = WeightedSelector(loader.outcomes(domain))
    scorer = ContextScorer(loader.rules(domain))
    context = ResolutionContext(domain=domain, unit_id="simulation", signals=signals)
    adjustments = scorer.score(context)

    rng = DeterministicRNG(seed)
    counts: Counter[str] = Counter(selector.select(rng, adjustments).code for _ in range(draws))
    rows: List[Dict[str, Any]] = []
    for outcome, probability in selector.probabilities(adjustments):
        observed = counts.get(outcome.code, 0)
        rows.append(
            {
                "code": outcome.code,
                "group": outcome.group,
                "expected": round(probability, 4),
                "observed": round(observed / draws, 4) if draws else 0.0,
                "count": observed,
            }
        )
    return {
        "domain": domain,
        "draws": draws,
        "signals": signals,
        "adjustments": [
            {"group": adj.group, "factor": adj.factor, "rule": adj.rule} for adj in adjustments
        ],
        "outcomes": rows,
    }


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Simulate weighted outcome draws for a domain")
    parser.add_argument("domain", choices=WEIGHTED_DOMAINS, help="Domain whose catalog to sample")
    parser.add_argument(
        "--signal",
        action="append",
        type=parse_signal,
        default=[],
        help="Context signal as name=value (repeatable)",
    )
    parser.add_argument("--draws", type=int, default=10000, help="Number of draws")
    parser.add_argument("--seed", type=int, default=1987, help="RNG seed")
    parser.add_argument("--catalogs", type=Path, default=None, help="Alternate catalogs YAML")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    args = parser.parse_args(argv)

    report = simulate(
        args.domain,
        dict(args.signal),
        args.draws,
        seed=args.seed,
        catalog_path=args.catalogs,
    )
    if args.json:
        print(json.dumps(report, indent=2))
        return

    print(f"{report['domain']} over {report['draws']} draws, signals {report['signals']}")
    for adj in report["adjustments"]:
        print(f"  boost {adj['group']} x{adj['factor']} ({adj['rule']})")
    for row in report["outcomes"]:
        print(
            f"  {row['code']:<20} {row['group']:<12} "
            f"expected {row['expected']:.4f} observed {row['observed']:.4f}"
        )


if __name__ == "__main__":  # pragma: no cover - CLI tool
    main()
