"""
Scheduler - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the delivery engine.

- Provides argparse-based CLI
- Loads configuration from CLI and environment
- Entry point for the application

============================================================
USAGE
============================================================
python -m scheduler.cli
python -m scheduler.cli --single-tick
python -m scheduler.cli --serve-api --port 8080 --tick-interval 30

============================================================
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .core import setup_logging
from .models import SchedulerConfig
from .runtime import build_engine, run_engine


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="delivery-engine",
        description="Scheduled artifact delivery and threshold alerting engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                               # Run the scheduler loop
  %(prog)s --single-tick                 # Run one tick and exit
  %(prog)s --serve-api --port 8080       # Loop plus HTTP API
        """
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--tick-interval",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Scheduler tick interval in seconds (default: TICK_INTERVAL_SECONDS or 60)",
    )

    execution_group.add_argument(
        "--single-tick",
        action="store_true",
        help="Run a single tick and exit (no loop)",
    )

    execution_group.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        metavar="N",
        help="Artifacts delivered in parallel per tick",
    )

    # --------------------------------------------------------
    # API Options
    # --------------------------------------------------------
    api_group = parser.add_argument_group("API Options")

    api_group.add_argument(
        "--serve-api",
        action="store_true",
        help="Serve the HTTP API alongside the scheduler",
    )

    api_group.add_argument(
        "--host",
        type=str,
        default=os.getenv("API_HOST", "0.0.0.0"),
        help="API bind address (default: API_HOST or 0.0.0.0)",
    )

    api_group.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("API_PORT", "8080")),
        help="API port (default: API_PORT or 8080)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Logging format (default: LOG_FORMAT or json)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate CLI arguments, return list of errors."""
    errors = []

    if args.tick_interval is not None and args.tick_interval < 1:
        errors.append("--tick-interval must be at least 1 second")

    if args.max_concurrent is not None and args.max_concurrent < 1:
        errors.append("--max-concurrent must be at least 1")

    if not 0 < args.port < 65536:
        errors.append("--port must be between 1 and 65535")

    if args.single_tick and args.serve_api:
        errors.append("--single-tick cannot be combined with --serve-api")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> SchedulerConfig:
    """Environment configuration overridden by CLI arguments."""
    config = SchedulerConfig.from_env()
    overrides = {}

    if args.tick_interval is not None:
        overrides["tick_interval_seconds"] = args.tick_interval
    if args.max_concurrent is not None:
        overrides["max_concurrent_deliveries"] = args.max_concurrent
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.log_format is not None:
        overrides["log_format"] = args.log_format

    return dataclasses.replace(config, **overrides)


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    config = build_config(args)
    correlation_id = f"{config.correlation_id_prefix}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
    setup_logging(config.log_level, config.log_format, correlation_id)

    try:
        engine = build_engine(config)
        summary = await run_engine(
            engine,
            single_tick=args.single_tick,
            serve_api=args.serve_api,
            host=args.host,
            port=args.port,
        )
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        return 1

    if args.single_tick:
        print(json.dumps(summary, indent=2, default=str))
        return 0 if not summary.get("error") and summary.get("failed", 0) == 0 else 1
    return 0


def print_banner(args: argparse.Namespace, config: SchedulerConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  DELIVERY ENGINE")
    print("  Scheduled delivery & threshold alerting")
    print("=" * 60)
    print(f"  Mode:       {'single tick' if args.single_tick else 'loop'}")
    print(f"  Interval:   {config.tick_interval_seconds}s")
    print(f"  Log Level:  {config.log_level}")
    if args.serve_api:
        print(f"  API:        http://{args.host}:{args.port}")
    print("=" * 60)
    print()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    print_banner(args, build_config(args))

    return asyncio.run(async_main(args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
