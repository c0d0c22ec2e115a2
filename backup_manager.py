"""Command line interface for the database backup tool."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

from db_backup.backup import BackupRunner
from db_backup.config import AppConfig, ConfigError, load_config
from db_backup.storage import S3Uploader
from db_backup.utils import destination_key


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dump configured databases and upload the archives to S3-compatible storage.",
    )
    parser.add_argument("--config", help="Optional YAML configuration file.")
    parser.add_argument("--env-file", help="Load environment variables from this dotenv file first.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")

    subparsers = parser.add_subparsers(dest="command")

    parser_run = subparsers.add_parser("run", help="Back up all configured databases once.")
    parser_run.add_argument(
        "-s",
        "--service",
        action="append",
        dest="services",
        help="Only back up this service (may be given several times).",
    )

    subparsers.add_parser("list-services", help="Show configured services and destination keys.")

    return parser


def configure_logging(level: int) -> None:
    if level >= 2:
        log_level = logging.DEBUG
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def load_application_config(path: Optional[str]) -> AppConfig:
    try:
        return load_config(Path(path) if path else None)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)


def handle_list_services(config: AppConfig) -> None:
    today = date.today()
    for service in config.services:
        key = destination_key(service.name, today, prefix=config.storage.subfolder)
        print(f"  - {service.name}: s3://{config.storage.bucket}/{key}")


def handle_run(args: argparse.Namespace, config: AppConfig) -> int:
    uploader = S3Uploader.from_config(config.storage)
    runner = BackupRunner(config=config, uploader=uploader)
    summary = runner.run(args.services)
    print(summary.render())
    if not summary.jobs:
        print("No configured service matched the selection.", file=sys.stderr)
    return 0 if summary.ok else 1


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.verbose)
    if args.env_file:
        load_dotenv(args.env_file, override=False)

    config = load_application_config(args.config)

    if args.command == "list-services":
        handle_list_services(config)
        return 0
    if args.command == "run":
        return handle_run(args, config)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
