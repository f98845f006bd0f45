"""
cv-lifecycle - Main entry point.

Publishes, promotes and cleans up content views on a Foreman/Katello
server in one pass, then prints a JSON run summary.

Usage:
    cv-lifecycle --tags publish
    cv-lifecycle --tags cleanup --keep 3 --summary-file summary.json
    python -m cv_lifecycle.main --skip-tags cleanup-cv

Configuration comes from environment variables (see config.py and
client/settings.py); command line options override them.

Exit codes:
    0: run completed
    1: configuration error
    2: run aborted (server unhealthy or content views not readable)
    3: run completed with failed items and --fail-on-error was given
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

import json_log_formatter

from .client.foreman import ForemanClient
from .client.settings import ForemanSettings
from .config import ManagerConfig
from .orchestrator import TAGS, run_lifecycle, select_stages

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_ABORTED = 2
EXIT_ITEM_FAILURES = 3


def setup_logging(config: ManagerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Run configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Logs go to stderr, stdout carries the summary
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _split(values: Optional[List[str]]) -> List[str]:
    names: List[str] = []
    for value in values or []:
        names.extend(part for part in value.split(",") if part.strip())
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cv-lifecycle",
        description="Publish, promote and clean up Katello content views",
    )
    parser.add_argument(
        "--tags",
        "-t",
        action="append",
        help=f"Stages or tags to run (comma separated): {', '.join(sorted(TAGS))}",
    )
    parser.add_argument("--skip-tags", action="append", help="Stages or tags to skip")
    parser.add_argument("--organization", "-o", help="Organization name")
    parser.add_argument("--environment", "-e", help="Lifecycle environment to promote to")
    parser.add_argument("--keep", type=int, help="Versions to keep per content view")
    parser.add_argument("--pacing-delay", type=float, help="Seconds between triggers")
    parser.add_argument("--poll-interval", type=float, help="Seconds between task polls")
    parser.add_argument("--max-polls", type=int, help="Task polls before giving up")
    parser.add_argument("--fallback-wait", type=float, help="Wait when task status is unavailable")
    parser.add_argument("--summary-file", help="Also write the JSON summary to this file")
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help="Exit non-zero when any item failed",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def apply_overrides(config: ManagerConfig, args: argparse.Namespace) -> ManagerConfig:
    """Overlay command line options on the environment configuration."""
    lifecycle = config.lifecycle
    watcher = config.watcher
    observability = config.observability

    lifecycle_changes = {
        "organization": args.organization,
        "target_environment": args.environment,
        "keep_versions": args.keep,
        "pacing_delay": args.pacing_delay,
    }
    watcher_changes = {
        "poll_interval": args.poll_interval,
        "max_polls": args.max_polls,
        "fallback_wait": args.fallback_wait,
    }
    lifecycle = dataclasses.replace(
        lifecycle, **{k: v for k, v in lifecycle_changes.items() if v is not None}
    )
    watcher = dataclasses.replace(
        watcher, **{k: v for k, v in watcher_changes.items() if v is not None}
    )
    if args.log_level:
        observability = dataclasses.replace(observability, log_level=args.log_level)

    updated = dataclasses.replace(
        config, lifecycle=lifecycle, watcher=watcher, observability=observability
    )
    updated.validate()
    return updated


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(ManagerConfig.from_env(), args)
        stages = select_stages(_split(args.tags), _split(args.skip_tags))
        settings = ForemanSettings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(config)
    config.log_config()

    client = ForemanClient(settings, organization=config.lifecycle.organization)
    summary = asyncio.run(run_lifecycle(client, config, stages=stages))

    output = summary.to_json()
    print(output)
    if args.summary_file:
        with open(args.summary_file, "w") as f:
            f.write(output)
        logger.info(f"Summary written to {args.summary_file}")

    if summary.aborted:
        return EXIT_ABORTED
    if args.fail_on_error and summary.has_failures:
        return EXIT_ITEM_FAILURES
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
