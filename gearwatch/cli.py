import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import (
    build_alerts_config,
    build_provider_config,
    build_rules_config,
    build_scheduler_config,
    load_config,
    load_fixtures,
)
from .errors import GearwatchError
from .logging_setup import configure_logging_from_dict
from .models import AggregateCounters, NotificationItem
from .provider import create_provider
from .session import MonitorSession
from .state_store import NAMED_FILTERS, NotificationFeed
from .version import __version__

logger = logging.getLogger(__name__)


def configure_logging(cfg: Dict) -> None:
    """Configure logging based on configuration.

    Args:
        cfg: Configuration dictionary containing logging settings
    """
    level, log_file = configure_logging_from_dict(cfg)
    logger.debug(f"Logging configured at level {level}")
    if log_file:
        logger.debug(f"Also logging to file: {log_file}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for gearwatch.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    p = argparse.ArgumentParser(
        description="gearwatch: equipment loan counters and notification feed."
    )
    p.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    p.add_argument(
        "--config",
        "-c",
        help="Path to YAML configuration file.",
    )
    p.add_argument(
        "--fixtures",
        help="YAML file with equipment/checkouts/users rows to use instead of the data service.",
    )
    p.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format.",
    )
    p.add_argument(
        "--filter",
        default="all",
        choices=NAMED_FILTERS,
        help="Which notifications to print.",
    )
    p.add_argument(
        "--watch",
        action="store_true",
        help="Keep refreshing on the configured interval and reprint on every change.",
    )
    args = p.parse_args(argv)
    if not args.config and not args.fixtures:
        p.error("one of --config or --fixtures is required")
    return args


def print_text_summary(counters: Optional[AggregateCounters], notifications: List[NotificationItem]) -> None:
    """Print counters and notifications in human-readable text format.

    Args:
        counters: Counters of the last pass (None when nothing was computed yet)
        notifications: Notifications to print, in feed order
    """
    if counters is None:
        print("counters: unavailable")
    else:
        print(
            f"available: {counters.available_equipment}  "
            f"checked out: {counters.checked_out_equipment}  "
            f"overdue: {counters.overdue_equipment}  "
            f"unread: {counters.unread_notifications}"
        )
    print()
    for n in notifications:
        marker = " " if n.read else "*"
        print(f"{marker} [{n.priority.name}] {n.title} ({n.id})")
        print(f"    {n.message}")
    print()


def print_json_summary(counters: Optional[AggregateCounters], notifications: List[NotificationItem]) -> None:
    """Print counters and notifications in JSON format.

    Args:
        counters: Counters of the last pass
        notifications: Notifications to serialize
    """
    out: Dict[str, Any] = {
        "counters": counters.as_dict() if counters else None,
        "notifications": [n.as_dict() for n in notifications],
    }
    json.dump(out, sys.stdout, indent=2)
    print()


def _print(session: MonitorSession, output_format: str, feed) -> None:
    items = list(feed)
    counters = session.get_aggregate_counters()
    if output_format == "json":
        print_json_summary(counters, items)
    else:
        print_text_summary(counters, items)
    sys.stdout.flush()


def build_session(cfg: Dict[str, Any], fixtures: Optional[Dict[str, Any]] = None) -> MonitorSession:
    provider = create_provider(build_provider_config(cfg), fixtures)
    return MonitorSession(
        provider,
        rules=build_rules_config(cfg),
        scheduler_config=build_scheduler_config(cfg),
        alerts=build_alerts_config(cfg),
        on_error=lambda err, trigger: print(f"{trigger} refresh failed: {err}", file=sys.stderr),
    )


def run_once(session: MonitorSession, output_format: str, filter_name: str) -> int:
    """Run a single pass without arming the scheduler timers."""
    try:
        session.trigger_refresh("explicit")
    except GearwatchError as e:
        print(f"Refresh failed: {e}", file=sys.stderr)
        return 1
    _print(session, output_format, NotificationFeed(session.store, filter_name))
    return 0


def run_watch(session: MonitorSession, output_format: str, filter_name: str) -> int:
    feed = session.subscribe_to_notifications(filter_name)
    try:
        while True:
            _print(session, output_format, feed)
            while not feed.wait_for_update(timeout=1.0):
                pass
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        session.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the gearwatch CLI.

    Loads configuration, builds a session against the data service (or a
    fixtures file) and either prints one explicit refresh or keeps watching.

    Args:
        argv: Optional command line arguments (for testing)
    """
    args = parse_args(argv)

    cfg: Dict[str, Any] = {}
    if args.config:
        cfg = load_config(Path(args.config))
    configure_logging(cfg)

    fixtures = load_fixtures(Path(args.fixtures)) if args.fixtures else None
    try:
        session = build_session(cfg, fixtures)
    except (ValueError, RuntimeError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.watch:
        rc = run_watch(session, args.format, args.filter)
    else:
        rc = run_once(session, args.format, args.filter)
    sys.exit(rc)
