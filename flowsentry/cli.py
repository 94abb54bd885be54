from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog

from flowsentry.config import load_config
from flowsentry.errors import ConfigurationError
from flowsentry.logging_setup import configure_logging
from flowsentry.runner import latest_status, run_synthetic, run_uptime
from flowsentry.sites import load_sites

logger = structlog.get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowsentry", description="FlowSentry uptime and synthetic monitoring")
    parser.add_argument("--config", default=None, help="Path to monitoring YAML config")
    parser.add_argument("--sites", default=None, help="Path to the JSON site list (overrides config)")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("uptime", help="Probe every configured URL")
    sub.add_parser("synthetic", help="Run the synthetic checkout flow per enabled site")
    sub.add_parser("status", help="Print aggregated status of the latest uptime batch as JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        configure_logging(args.log_level or "INFO")
        logger.error("Invalid configuration", error=str(exc))
        return 1

    if args.sites:
        config = config.model_copy(update={"sites_file": args.sites})
    configure_logging(args.log_level or config.log_level)

    try:
        sites = load_sites(config.sites_file)
    except ConfigurationError as exc:
        logger.error("Invalid site list", path=config.sites_file, error=str(exc))
        return 1

    if args.command == "status":
        statuses = latest_status(config, sites=sites)
        json.dump({client: s.to_dict() for client, s in statuses.items()}, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    runner = run_uptime if args.command == "uptime" else run_synthetic
    report = asyncio.run(runner(config, sites=sites))

    # Failed checks are data, not a process failure: status generation must still run.
    logger.info(
        "Run summary",
        kind=report.kind,
        passed=report.passed,
        total=report.total,
        failed=report.failed,
        results_file=str(report.results_file),
        export={k: v.value for k, v in report.export.items()},
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
