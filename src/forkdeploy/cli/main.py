"""
forkdeploy CLI

Usage:
    forkdeploy <command> [args]

Commands: validate, plan, deploy, status.
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from forkdeploy import __version__
from forkdeploy.config import get_settings
from forkdeploy.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forkdeploy", description="Dependency-ordered protocol fork deployment"
    )
    parser.add_argument("--version", action="version", version=f"forkdeploy {__version__}")
    parser.add_argument("--log-level", help="Log level (default: FORKDEPLOY_LOG_LEVEL or INFO)")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Validate deployment configuration")
    validate_parser.add_argument("config", nargs="?", help="Path to deployment config YAML")

    plan_parser = subparsers.add_parser("plan", help="Show the deployment plan (no side effects)")
    plan_parser.add_argument("config", nargs="?", help="Path to deployment config YAML")
    plan_parser.add_argument("--output", choices=["text", "json"], default="text",
                             help="Output format")
    plan_parser.add_argument("-v", "--verbose", action="store_true",
                             help="Show dependency counts per step")

    deploy_parser = subparsers.add_parser("deploy", help="Run or resume the deployment")
    deploy_parser.add_argument("config", nargs="?", help="Path to deployment config YAML")
    deploy_parser.add_argument("--ledger", help="Ledger file (default: FORKDEPLOY_LEDGER_PATH)")
    deploy_parser.add_argument("--output-dir", help="Directory for deployment artifacts")
    deploy_parser.add_argument("--backend",
                               help="Backend name or module:factory (default: simulated)")
    deploy_parser.add_argument("--max-attempts", type=int,
                               help="Attempts per step for transient failures")
    deploy_parser.add_argument("--output", choices=["text", "json"], default="text",
                               help="Output format")

    status_parser = subparsers.add_parser("status", help="Show ledger entries")
    status_parser.add_argument("--ledger", help="Ledger file (default: FORKDEPLOY_LEDGER_PATH)")
    status_parser.add_argument("--output", choices=["text", "json"], default="text",
                               help="Output format")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(
        (args.log_level or settings.log_level).upper(),
        json_output=args.log_json or settings.log_json,
    )

    if args.command == "validate":
        from forkdeploy.cli.commands import validate_command
        sys.exit(validate_command(args.config))

    if args.command == "plan":
        from forkdeploy.cli.commands import plan_command
        sys.exit(plan_command(args.config, output_format=args.output, verbose=args.verbose))

    if args.command == "deploy":
        from forkdeploy.cli.commands import deploy_command
        sys.exit(deploy_command(
            args.config,
            ledger_path=args.ledger,
            output_dir=args.output_dir,
            backend=args.backend,
            max_attempts=args.max_attempts,
            output_format=args.output,
        ))

    if args.command == "status":
        from forkdeploy.cli.commands import status_command
        sys.exit(status_command(args.ledger, output_format=args.output))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
