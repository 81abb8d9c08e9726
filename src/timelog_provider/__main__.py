"""Entry point for ``python -m timelog_provider``."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys

from timelog_provider.core.errors import TimeLogProviderError
from timelog_provider.provider import TfsTimeLogDataProvider
from timelog_provider.services.config_manager import ConfigManager
from timelog_provider.services.credential_manager import CredentialManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timelog-provider",
        description="Load time-log records for an iteration from a TFS / Azure DevOps server.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Store server URL and credentials.")
    login.add_argument("--url", required=True, help="Project collection URL.")
    login.add_argument("--username", default="", help="Username; omit for a personal access token.")

    sub.add_parser("logout", help="Forget stored credentials.")

    load = sub.add_parser("load", help="Print reconciled records as JSON.")
    load.add_argument("--project", help="Team project name (defaults to config).")
    load.add_argument("--iteration", help="Iteration path (defaults to config).")
    load.add_argument("--indent", type=int, default=2, help="JSON indent (default: 2).")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command-line interface, returning the exit code."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = ConfigManager()
    credentials = CredentialManager(config)

    if args.command == "login":
        password = getpass.getpass("Password or access token: ")
        credentials.login(args.url, args.username, password)
        return 0

    if args.command == "logout":
        credentials.logout()
        return 0

    context = config.context(args.project, args.iteration)
    if context is None:
        logger.error("Both --project and --iteration are required (or set them in %s)", config.path)
        return 2

    try:
        provider = TfsTimeLogDataProvider.from_config(config, credentials)
        records = provider.load_data(context)
    except TimeLogProviderError as exc:
        logger.error("%s", exc)
        return 1

    json.dump([record.to_dict() for record in records], sys.stdout, indent=args.indent)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
