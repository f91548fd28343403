"""callrelay CLI entry point.

Usage:
    callrelay run [--config relay.yaml]
    callrelay check [--config relay.yaml]
    callrelay init [--output relay.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def _load(args: argparse.Namespace):
    from callrelay.config import RelayConfig, load_config

    if args.config:
        if not Path(args.config).exists():
            logger.error(f"Config file not found: {args.config}")
            sys.exit(1)
        return load_config(args.config).merge_env()
    return RelayConfig.from_env()


def cmd_run(args: argparse.Namespace) -> None:
    """Run the relay server."""
    config = _load(args)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    missing = config.missing_credentials()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        sys.exit(1)

    logger.info(f"Agent: {config.agent.agent_id}")
    logger.info(f"Calling from: {config.twilio.phone_number}")
    logger.info(f"Listening on: {config.server.host}:{config.server.port}")

    from callrelay.server import run_server

    run_server(config)


def cmd_check(args: argparse.Namespace) -> None:
    """Report whether every required credential is configured."""
    config = _load(args)
    missing = config.missing_credentials()
    if missing:
        print("Missing required settings:")
        for name in missing:
            print(f"  {name}")
        sys.exit(1)
    print("Configuration OK")


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from callrelay.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: callrelay run --config {output}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="callrelay",
        description="callrelay - Twilio to ElevenLabs conversational AI media relay",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `callrelay run`
    run_parser = subparsers.add_parser("run", help="Run the relay server")
    run_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to a YAML config file (default: environment / .env only)",
    )

    # `callrelay check`
    check_parser = subparsers.add_parser("check", help="Validate the configuration")
    check_parser.add_argument("--config", "-c", default=None, help="Path to a YAML config file")

    # `callrelay init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="relay.yaml",
        help="Output file path (default: relay.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args(argv)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "check":
        cmd_check(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
