import argparse
import asyncio
import logging
import sys

from .app import run_app, run_replay
from .config_loader import load_settings_from_cli
from .error import ConfigError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Decodes and tracks BLE food thermometer probe readings."
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to the configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action=argparse.BooleanOptionalAction,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--stale-after",
        type=str,
        help="Time without readings before a probe is stale (e.g. 30s)",
    )
    parser.add_argument(
        "--prometheus-exporter-enabled",
        action=argparse.BooleanOptionalAction,
        help="Enable Prometheus exporter",
    )
    parser.add_argument(
        "--prometheus-exporter-port",
        type=int,
        help="Prometheus exporter port",
        metavar="PORT",
    )
    parser.add_argument("--mqtt-host", type=str, help="MQTT broker host")
    parser.add_argument("--mqtt-port", type=int, help="MQTT broker port")
    parser.add_argument("--mqtt-username", type=str, help="MQTT broker username")
    parser.add_argument("--mqtt-password", type=str, help="MQTT broker password")
    parser.add_argument(
        "--mqtt-reconnect-interval", type=int, help="MQTT broker reconnect interval"
    )
    parser.add_argument(
        "--log-level", type=str, help="Set the logging level (e.g., INFO, DEBUG)"
    )
    parser.add_argument(
        "--replay",
        metavar="FILE",
        help="Replay a JSON-lines notification log, print the final states and exit.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check the configuration and exit without running the application.",
    )
    return parser


def cli_main():
    """Synchronous entry point for the command-line interface."""
    args = build_parser().parse_args()

    try:
        settings = load_settings_from_cli(args)
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.check:
        print("Configuration is valid.")
        sys.exit(0)

    if args.replay:
        try:
            run_replay(settings, args.replay)
        except OSError as e:
            print(f"Cannot replay {args.replay}: {e}", file=sys.stderr)
            sys.exit(1)
        sys.exit(0)

    try:
        asyncio.run(run_app(settings, args))
    except KeyboardInterrupt:
        logger.info("Application terminated by user.")
        sys.exit(0)
