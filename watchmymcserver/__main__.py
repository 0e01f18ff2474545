"""
Entry point for running the watcher via `python -m watchmymcserver`.

Loads the server config, starts the schedule clock and supervises the
server until interrupted.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .config import Settings, load_config
from .errors import WatchError
from .interrupt import InterruptBridge
from .logs import setup_logging
from .manager import Supervisor
from .process import ProcessRunner

logger = logging.getLogger("watchmymcserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="watchmymcserver",
        description="Start and stop a Minecraft server on a daily schedule.",
    )
    parser.add_argument(
        "-c", "--config", type=Path, help="server config file (created with defaults if missing)"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="don't echo server output to the console"
    )
    parser.add_argument(
        "--check", action="store_true", help="validate the config and exit"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    """Run the watcher. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    config_path = args.config or settings.config_path

    try:
        server_config = load_config(config_path)
        process_config = server_config.process
        if args.quiet:
            process_config = replace(process_config, quiet=True)

        setup_logging(settings, quiet=process_config.quiet)
        logger.info(f"watchmymcserver {__version__} using {server_config.path}")

        if args.check:
            process_config.validate()
            print(f"{config_path}: ok ({server_config.window.describe()})")
            return 0

        runner = ProcessRunner(process_config)
    except WatchError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        # Watcher log directory not writable
        print(f"error: {e}", file=sys.stderr)
        return 1

    supervisor = Supervisor(runner, window=server_config.window, settings=settings)
    with InterruptBridge(supervisor.submit):
        supervisor.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
