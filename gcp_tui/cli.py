#!/usr/bin/env python

import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Mapping, Optional, Sequence

from . import __version__
from .app import DashboardApp
from .actions import ActionExecutor
from .auth import CredentialProvider, discover_project
from .dispatch import DispatchEngine
from .errors import SchemaError
from .helpers import REFRESH_INTERVAL_SECONDS
from .http_client import HttpClient
from .registry import Registry, load_default
from .session import Session
from .settings import (
    UserConfig,
    config_path,
    effective_project,
    effective_zone,
    initial_resource,
    log_path,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

BACKGROUND_WORKERS = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tgcp",
        description="A terminal dashboard for Google Cloud resources.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("-z", "--zone", help="Zone to start in.")
    parser.add_argument("-p", "--project", help="Project to start in.")
    parser.add_argument(
        "--readonly",
        action="store_true",
        help="Refuse every mutating action.",
    )
    parser.add_argument(
        "--log-level",
        choices=["off", *LOG_LEVELS],
        default="off",
        help="Verbosity of the log file in the config directory.",
    )
    parser.add_argument(
        "--resources-dir",
        action="append",
        default=[],
        metavar="DIR",
        help="Extra directory of resource definitions. May be repeated.",
    )
    parser.add_argument(
        "--refresh",
        type=float,
        default=REFRESH_INTERVAL_SECONDS,
        help="Auto-refresh interval in seconds.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(
    level: str,
    environ: Optional[Mapping[str, str]] = None,
    root: Optional[logging.Logger] = None,
):
    """
    Sends log records to a file so the terminal UI is never written to.
    """
    root = root or logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if level == "off":
        root.addHandler(logging.NullHandler())
        return

    path = log_path(environ)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(LOG_LEVELS[level])
    logger.info("Logging to %s at level %s", path, level)


def build_session(
    args: argparse.Namespace,
    registry: Registry,
    http: HttpClient,
    submit,
    environ: Optional[Mapping[str, str]] = None,
) -> Session:
    """Wires the engine, executor, and persisted config into a session."""
    environ = os.environ if environ is None else environ
    config_file = config_path(environ)
    config = UserConfig.load(config_file)

    project = effective_project(args.project, config, environ)
    if project is None:
        project = discover_project(http, environ) or ""
    zone = effective_zone(args.zone, config, environ)
    logger.info("Starting in project '%s', zone '%s'", project, zone)

    credentials = CredentialProvider(http)
    engine = DispatchEngine(http, credentials, color_resolver=registry.color_for)
    executor = ActionExecutor(engine, read_only=args.readonly)
    session = Session(
        registry,
        engine,
        executor,
        project=project,
        zone=zone,
        config=config,
        config_file=config_file,
        refresh_interval=args.refresh,
        submit=submit,
    )
    session.start(initial_resource(config, registry))
    return session


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Entry point of the `tgcp` command.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        registry = load_default(args.resources_dir)
    except SchemaError as e:
        for error in e.errors:
            print(f"error: {error}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"error: cannot read resource definitions: {e}", file=sys.stderr)
        return 2

    http = HttpClient()
    try:
        with ThreadPoolExecutor(max_workers=BACKGROUND_WORKERS) as pool:
            session = build_session(args, registry, http, pool.submit)
            DashboardApp(session).run()
    finally:
        http.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
