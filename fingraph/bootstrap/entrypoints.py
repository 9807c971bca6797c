"""
bootstrap/entrypoints.py - Application entry points

Provides the `fingraph` command: API server, graph inspection, and
recalculation / audit feed commands against a running server.
"""

from __future__ import annotations
from typing import List, Optional
import argparse
import json
import logging
import sys

import httpx

logger = logging.getLogger("bootstrap.entrypoints")


def setup_logging(level: str = "INFO", log_file: str = None, json_format: bool = False) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:

        class JSONFormatter(logging.Formatter):
            def format(self, record):
                return json.dumps({
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                })

        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="FinGraph cross-domain recalculation service",
        prog="fingraph",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path",
        default=None,
    )

    commands = parser.add_subparsers(dest="command")

    api = commands.add_parser("api", help="Start API server")
    api.add_argument("-p", "--port", type=int, default=None, help="API port")
    api.add_argument("-H", "--host", default=None, help="API host")

    commands.add_parser("nodes", help="List domains in declared order")
    commands.add_parser("validate", help="Validate the dependency graph")

    recalc = commands.add_parser("recalc", help="Recalculate from a domain on a running server")
    recalc.add_argument("source", help="Source domain (e.g. Compta)")
    recalc.add_argument("--year", type=int, default=None, help="Fiscal year (default: all years)")
    recalc.add_argument("--url", default=None, help="Server base URL")

    events = commands.add_parser("events", help="Show the recent audit feed of a running server")
    events.add_argument("--limit", type=int, default=20, help="Maximum number of events")
    events.add_argument("--url", default=None, help="Server base URL")

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(args: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = _build_parser()
    parsed = parser.parse_args(args)

    log_level = "DEBUG" if parsed.verbose else parsed.log_level
    setup_logging(level=log_level, log_file=parsed.log_file)

    if parsed.command is None:
        parser.print_help()
        return 0

    from fingraph.errors import ApiError, FinGraphError, RecalcIncompleteError
    from .config import load_config

    config = load_config(parsed.config)

    try:
        if parsed.command == "api":
            from .app import FinGraphApp

            if parsed.port:
                config.api.port = parsed.port
            if parsed.host:
                config.api.host = parsed.host
            FinGraphApp(config=config).run_api()
            return 0

        if parsed.command in ("nodes", "validate"):
            from .app import FinGraphApp

            app = FinGraphApp(config=config).build()
            if parsed.command == "nodes":
                for node in app.context.registry.nodes():
                    print(f"{node.value}\t{node.label}")
            else:
                _print_json(app.context.registry.to_dict())
            return 0

        from fingraph.client import FinGraphClient

        base_url = parsed.url or config.client.base_url
        with FinGraphClient(base_url, timeout=config.client.timeout_seconds) as client:
            if parsed.command == "recalc":
                run = client.recalc(parsed.source, parsed.year)
                _print_json({
                    "runId": run.run_id,
                    "source": run.source.value,
                    "scopeKey": run.scope_key,
                    "order": [n.value for n in run.order],
                })
            else:
                _print_json(client.recent_events(parsed.limit))
        return 0

    except RecalcIncompleteError as e:
        print(f"{e.message}: {e.server_message}", file=sys.stderr)
        _print_json({
            "order": [n.value for n in e.run.order],
            "failedNode": e.failed_node.value if e.failed_node else None,
        })
        return 2
    except ApiError as e:
        print(e.message, file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Could not reach FinGraph API: {e}", file=sys.stderr)
        return 1
    except FinGraphError as e:
        logger.error(f"{e.category.value} error: {e.message}")
        _print_json(e.to_dict())
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
