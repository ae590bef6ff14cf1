"""
Command line entrypoint for clusterwatch.

Version: 0.3.0
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from clusterwatch import __version__
from clusterwatch.config import load_config
from clusterwatch.core.logging_utils import configure_logging
from clusterwatch.cli.command_handlers import handle_replay, handle_rules, handle_serve

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(description="Cluster metrics tracking and threshold alerting")
    parser.add_argument("--version", action="version", version=f"clusterwatch {__version__}")
    parser.add_argument("--root", type=Path, default=None, help="Working directory for state and logs")
    parser.add_argument("--config", default=None, help="Config file (default: <root>/clusterwatch.yaml)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subcommands = parser.add_subparsers(dest="command", required=True)

    rules_parser = subcommands.add_parser("rules", help="List the alert rule catalog")
    rules_parser.add_argument("--json", action="store_true", help="Output JSON")

    replay_parser = subcommands.add_parser("replay", help="Replay a JSON-lines file of snapshots")
    replay_parser.add_argument("file", type=Path, help="One snapshot object per line")
    replay_parser.add_argument(
        "--interval", type=float, default=10.0,
        help="Seconds between snapshots that carry no fetchedAt",
    )
    replay_parser.add_argument("--label", default=None, help="Scope label stored on new alerts")
    replay_parser.add_argument("--persist", action="store_true", help="Use the configured state store")
    replay_parser.add_argument("--json", action="store_true", help="Output one JSON result per tick")

    serve_parser = subcommands.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entrypoint for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    root = (args.root or Path.cwd()).resolve()
    config = load_config(root, args.config)
    log_file = config.logging.path
    if log_file and not Path(log_file).is_absolute():
        log_file = str(root / log_file)
    active_level = configure_logging(
        args.log_level or config.logging.level,
        log_file=log_file,
        reset_on_start=config.logging.reset_on_start,
    )
    logger.info("Log level set to %s", active_level)

    if args.command == "rules":
        handle_rules(config, root, as_json=args.json)
    elif args.command == "replay":
        handle_replay(
            config,
            root,
            args.file,
            interval=args.interval,
            scope_label=args.label,
            persist=args.persist,
            as_json=args.json,
        )
    elif args.command == "serve":
        handle_serve(config, root, host=args.host, port=args.port)
    else:
        raise ValueError(f"Unhandled command {args.command}")


if __name__ == "__main__":
    main()
