"""Command-line entry point for the software watchdog.

    sw-watchdog lease [--activate] [--publish] [-h]

The lease (milliseconds) is handed to the liveliness monitor and has to be
larger than the heartbeat period of the watched checkpoints to absorb
transmission jitter. Without --activate the watchdog waits in the
unconfigured state for lifecycle transitions (REST API).
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from pydantic import ValidationError

from sw_watchdog.cluster.lifecycle import ConfigurationError
from sw_watchdog.cluster.node import WatchdogNode
from sw_watchdog.config.settings import WatchdogSettings
from sw_watchdog.utils.logging_config import setup_logging

OPTION_AUTO_START = "--activate"
OPTION_PUB_STATUS = "--publish"


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid lease {value!r}: expected positive integer milliseconds")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"invalid lease {value!r}: expected positive integer milliseconds")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sw-watchdog",
        description="Liveliness-based software watchdog",
    )
    parser.add_argument(
        "lease",
        type=_positive_int,
        help="Lease in positive integer milliseconds granted to the watched entity.",
    )
    parser.add_argument(
        OPTION_AUTO_START,
        dest="autostart",
        action="store_true",
        help="Start the watchdog on creation. Defaults to false.",
    )
    parser.add_argument(
        OPTION_PUB_STATUS,
        dest="publish_failures",
        action="store_true",
        help="Publish lease expiration of the watched entity. Defaults to false.",
    )
    parser.add_argument("--topic", dest="heartbeat_topic", help="Heartbeat topic name (default: heartbeat)")
    parser.add_argument("--history-size", dest="history_capacity", type=int,
                        help="Number of heartbeats kept for diagnosis (default: 25)")
    parser.add_argument("--host", help="Bind address for the wire and REST servers")
    parser.add_argument("--port", type=int, help="Wire protocol port (default: 9400)")
    parser.add_argument("--api-port", dest="api_port", type=int, help="REST API port (disabled by default)")
    parser.add_argument("--failure-log", dest="failure_log", help="Also append failures to this JSONL file")
    parser.add_argument("--log-level", dest="log_level", help="Log level (default: INFO)")
    parser.add_argument("--log-format", dest="log_format", choices=("json", "console"),
                        help="Log rendering (default: json)")
    return parser


def load_settings(argv: Optional[List[str]] = None,
                  parser: Optional[argparse.ArgumentParser] = None) -> WatchdogSettings:
    """Parse arguments into settings; exits with usage on invalid input."""
    parser = parser or build_parser()
    args = parser.parse_args(argv)

    overrides = {"lease_duration_ms": args.lease}
    for key in ("heartbeat_topic", "history_capacity", "host", "port", "api_port",
                "failure_log", "log_level", "log_format"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    # Flags only switch features on; env settings stay in effect otherwise
    if args.autostart:
        overrides["autostart"] = True
    if args.publish_failures:
        overrides["publish_failures"] = True

    try:
        return WatchdogSettings(**overrides)
    except ValidationError as e:
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        parser.error(errors)


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    settings = load_settings(argv, parser)

    setup_logging(level=settings.log_level, node_id="simple_watchdog",
                  component="watchdog", log_path=settings.log_path,
                  log_format=settings.log_format)
    try:
        node = WatchdogNode(settings)
    except ConfigurationError as e:
        parser.exit(1, f"sw-watchdog: configuration failed: {e}\n")

    print(
        f"Watchdog listening on {settings.host}:{settings.port} "
        f"(lease {settings.lease_duration_ms} ms, state {node.lifecycle.state.value})"
    )
    if settings.api_port is not None:
        print(f"Lifecycle API on http://{settings.host}:{settings.api_port}")
    print("Press Ctrl+C to stop the watchdog.")
    node.start()


if __name__ == "__main__":
    main()
