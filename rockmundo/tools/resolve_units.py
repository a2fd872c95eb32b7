"""Operator CLI: run resolutions, inspect the job ledger and stale claims."""
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..config import SettingsLoader
from ..domains import RESOLVERS
from ..service import ResolutionService
from ..telemetry import TelemetryCollector


def _service(args: argparse.Namespace) -> ResolutionService:
    settings = SettingsLoader(args.settings).load()
    db_path = args.db or settings.database_path
    telemetry = TelemetryCollector(args.telemetry_db or settings.telemetry_path)
    return ResolutionService(
        db_path,
        settings=settings,
        catalog_path=args.catalogs,
        telemetry=telemetry,
    )


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO timestamp: {value}") from exc


def cmd_resolve(args: argparse.Namespace) -> None:
    service = _service(args)
    summary = service.resolve(
        args.domain,
        unit_id=args.unit_id,
        now=args.now,
        triggered_by="cli",
    )
    service.telemetry.flush()
    if args.json:
        print(json.dumps(summary.to_dict(), default=str, indent=2))
        return

    lines: List[str] = [
        f"{summary.domain}: processed {summary.processed}, completed {summary.completed}, "
        f"skipped {summary.skipped}, failed {len(summary.failures)} (run {summary.run_id})"
    ]
    for result in summary.results:
        detail = result.outcome_code or result.reason or result.error or ""
        lines.append(f"  - {result.unit_id}: {result.status} {detail}".rstrip())
    print("\n".join(lines))


def cmd_jobs(args: argparse.Namespace) -> None:
    service = _service(args)
    job_name = f"resolve-{args.domain}" if args.domain else None
    runs = service.state.list_job_runs(job_name, limit=args.limit)
    if args.json:
        print(json.dumps(runs, default=str, indent=2))
        return

    if not runs:
        print("No job runs recorded.")
        return
    lines = []
    for run in runs:
        duration = run.get("duration_ms")
        timing = f"{duration:.1f}ms" if duration is not None else "-"
        lines.append(
            f"#{run['id']} {run['job_name']} {run['status']} {run['started_at']} "
            f"{timing} processed={run.get('processed_count')} errors={run.get('error_count')}"
        )
        if run.get("error_message"):
            lines.append(f"    error: {run['error_message']}")
    print("\n".join(lines))


def cmd_stale(args: argparse.Namespace) -> None:
    service = _service(args)
    if args.reclaim:
        counts = service.reclaim_stale(args.domain, now=args.now)
        service.telemetry.flush()
        if args.json:
            print(json.dumps(counts, indent=2))
            return
        total = sum(counts.values())
        print(f"Reclaimed {total} stale claims.")
        for name, count in sorted(counts.items()):
            if count:
                print(f"  - {name}: {count}")
        return

    report = service.stale_claims(args.domain, now=args.now)
    if args.json:
        print(json.dumps(report, default=str, indent=2))
        return
    stale = {name: rows for name, rows in report.items() if rows}
    if not stale:
        print("No stale claims.")
        return
    for name, rows in sorted(stale.items()):
        print(f"{name}:")
        for row in rows:
            print(f"  - {row['id']} claimed at {row['claimed_at']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run and inspect Rockmundo outcome resolutions.")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the state SQLite database (default: settings storage.database).",
    )
    parser.add_argument("--settings", type=Path, default=None, help="Alternate settings YAML.")
    parser.add_argument("--catalogs", type=Path, default=None, help="Alternate catalogs YAML.")
    parser.add_argument("--telemetry-db", type=Path, default=None, help="Telemetry SQLite path.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve eligible units of a domain.")
    resolve.add_argument("domain", choices=sorted(RESOLVERS), help="Domain to resolve.")
    resolve.add_argument("--unit-id", type=str, help="Resolve a single unit.")
    resolve.add_argument("--now", type=_parse_now, help="Override the current time (ISO 8601).")
    resolve.add_argument("--json", action="store_true", help="Output JSON for automation.")
    resolve.set_defaults(func=cmd_resolve)

    jobs = subparsers.add_parser("jobs", help="List recent resolution runs.")
    jobs.add_argument("--domain", choices=sorted(RESOLVERS), help="Only runs for this domain.")
    jobs.add_argument("--limit", type=int, default=20, help="Number of runs to show.")
    jobs.add_argument("--json", action="store_true", help="Output JSON for automation.")
    jobs.set_defaults(func=cmd_jobs)

    stale = subparsers.add_parser("stale", help="Show or reclaim abandoned claims.")
    stale.add_argument("--domain", choices=sorted(RESOLVERS), help="Limit to one domain.")
    stale.add_argument("--reclaim", action="store_true", help="Return stale claims to their prior status.")
    stale.add_argument("--now", type=_parse_now, help="Override the current time (ISO 8601).")
    stale.add_argument("--json", action="store_true", help="Output JSON for automation.")
    stale.set_defaults(func=cmd_stale)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level))
    args.func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
